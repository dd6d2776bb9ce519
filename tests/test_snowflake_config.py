import io
import os
import tempfile
import unittest
from contextlib import redirect_stdout

import snowflake_config
from snowflake_config import ConfigError, build_id_generator, load_config, setup_logging
from snowflake_cli import main
from snowflake_id_generator import InvalidIdentityError, parse_id


class ConfigFileTestCase(unittest.TestCase):
    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmpdir.cleanup)

    def write_config(self, text):
        path = os.path.join(self.tmpdir.name, "config.yaml")
        with open(path, "w", encoding="utf-8") as f:
            f.write(text)
        return path


class TestLoadConfig(ConfigFileTestCase):
    def test_missing_file_uses_defaults(self):
        cfg = load_config(os.path.join(self.tmpdir.name, "absent.yaml"), environ={})
        self.assertEqual(cfg["snowflake"]["worker_id"], 0)
        self.assertEqual(cfg["snowflake"]["datacenter_id"], 0)
        self.assertEqual(cfg["snowflake"]["on_clock_backwards"], "reset")
        self.assertEqual(cfg["logging"]["level"], "INFO")

    def test_yaml_values(self):
        path = self.write_config(
            "snowflake:\n  worker_id: 4\n  datacenter_id: 9\n  on_clock_backwards: raise\n"
        )
        cfg = load_config(path, environ={})
        self.assertEqual(cfg["snowflake"]["worker_id"], 4)
        self.assertEqual(cfg["snowflake"]["datacenter_id"], 9)
        self.assertEqual(cfg["snowflake"]["on_clock_backwards"], "raise")
        self.assertEqual(cfg["snowflake"]["epoch"], 0)

    def test_environment_overrides_file(self):
        path = self.write_config("snowflake:\n  worker_id: 4\n")
        cfg = load_config(path, environ={"SNOWFLAKE_WORKER_ID": "17", "SNOWFLAKE_LOG_LEVEL": "debug"})
        self.assertEqual(cfg["snowflake"]["worker_id"], 17)
        self.assertEqual(cfg["logging"]["level"], "debug")

    def test_config_path_from_environment(self):
        path = self.write_config("snowflake:\n  datacenter_id: 21\n")
        cfg = load_config(environ={"SNOWFLAKE_CONFIG": path})
        self.assertEqual(cfg["snowflake"]["datacenter_id"], 21)

    def test_defaults_not_mutated(self):
        path = self.write_config("snowflake:\n  worker_id: 8\n")
        load_config(path, environ={})
        self.assertEqual(snowflake_config.DEFAULT_CONFIG["snowflake"]["worker_id"], 0)

    def test_invalid_yaml(self):
        path = self.write_config("snowflake: [worker_id: 1\n")
        with self.assertRaises(ConfigError):
            load_config(path, environ={})

    def test_non_mapping_top_level(self):
        path = self.write_config("- 1\n- 2\n")
        with self.assertRaises(ConfigError):
            load_config(path, environ={})

    def test_non_integer_worker_id(self):
        path = self.write_config("snowflake:\n  worker_id: abc\n")
        with self.assertRaises(ConfigError):
            load_config(path, environ={})

    def test_non_numeric_spin_interval(self):
        for value in ("fast", "true", "[1]"):
            path = self.write_config(f"snowflake:\n  spin_interval: {value}\n")
            with self.assertRaises(ConfigError):
                load_config(path, environ={})

    def test_non_string_clock_backwards_policy(self):
        path = self.write_config("snowflake:\n  on_clock_backwards: 1\n")
        with self.assertRaises(ConfigError):
            load_config(path, environ={})

    def test_unknown_log_level_warns(self):
        with self.assertLogs("snowflake_config", level="WARNING"):
            setup_logging("verbose")

    def test_invalid_environment_value(self):
        with self.assertRaises(ConfigError):
            load_config(os.path.join(self.tmpdir.name, "absent.yaml"),
                        environ={"SNOWFLAKE_DATACENTER_ID": "x"})


class TestBuildIdGenerator(ConfigFileTestCase):
    def test_builds_from_config(self):
        path = self.write_config("snowflake:\n  worker_id: 6\n  datacenter_id: 2\n")
        gen = build_id_generator(load_config(path, environ={}))
        decoded = parse_id(gen.generate_id())
        self.assertEqual((decoded.worker_id, decoded.datacenter_id), (6, 2))

    def test_out_of_range_identity(self):
        path = self.write_config("snowflake:\n  worker_id: 40\n")
        with self.assertRaises(InvalidIdentityError):
            build_id_generator(load_config(path, environ={}))

    def test_shared_generator(self):
        self.addCleanup(setattr, snowflake_config, "_id_generator", None)
        snowflake_config._id_generator = None
        self.assertIs(snowflake_config.get_id_generator(), snowflake_config.get_id_generator())


class TestMain(ConfigFileTestCase):
    def run_main(self, argv):
        out = io.StringIO()
        with redirect_stdout(out):
            code = main(argv)
        return code, out.getvalue().split()

    def test_generates_requested_count(self):
        path = self.write_config("snowflake:\n  worker_id: 3\n  datacenter_id: 5\n")
        code, lines = self.run_main(["--config", path, "-n", "5"])
        self.assertEqual(code, 0)
        ids = [int(line) for line in lines]
        self.assertEqual(len(set(ids)), 5)
        self.assertEqual(ids, sorted(ids))
        self.assertEqual(parse_id(ids[0]).worker_id, 3)
        self.assertEqual(parse_id(ids[0]).datacenter_id, 5)

    def test_identity_override(self):
        path = self.write_config("snowflake:\n  worker_id: 3\n")
        code, lines = self.run_main(["--config", path, "--worker-id", "30", "--datacenter-id", "31"])
        self.assertEqual(code, 0)
        decoded = parse_id(int(lines[0]))
        self.assertEqual((decoded.worker_id, decoded.datacenter_id), (30, 31))

    def test_invalid_identity_exit_code(self):
        path = self.write_config("snowflake:\n  worker_id: 3\n")
        code, lines = self.run_main(["--config", path, "--worker-id", "32"])
        self.assertEqual(code, 2)
        self.assertEqual(lines, [])

    def test_invalid_spin_interval_exit_code(self):
        path = self.write_config("snowflake:\n  spin_interval: fast\n")
        code, lines = self.run_main(["--config", path])
        self.assertEqual(code, 2)
        self.assertEqual(lines, [])

    def test_negative_decode_exit_code(self):
        path = self.write_config("snowflake:\n  worker_id: 3\n")
        code, lines = self.run_main(["--config", path, "--decode", "-1"])
        self.assertEqual(code, 2)
        self.assertEqual(lines, [])

    def test_zero_count_exit_code(self):
        path = self.write_config("snowflake:\n  worker_id: 3\n")
        code, lines = self.run_main(["--config", path, "-n", "0"])
        self.assertEqual(code, 2)
        self.assertEqual(lines, [])

    def test_decode(self):
        path = self.write_config("snowflake:\n  worker_id: 3\n")
        snowflake_id = (1_700_000_000_000 << 22) | (5 << 17) | (3 << 12) | 7
        code, lines = self.run_main(["--config", path, "--decode", str(snowflake_id)])
        self.assertEqual(code, 0)
        text = " ".join(lines)
        self.assertIn("worker_id: 5", text)
        self.assertIn("datacenter_id: 3", text)
        self.assertIn("sequence: 7", text)


if __name__ == "__main__":
    unittest.main()
