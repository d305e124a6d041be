import os
import tempfile
import unittest
from pathlib import Path
from unittest import mock

from atci.config import (
    AtciConfig, WorkerConfig, get_config_path, get_config_path_sha, load_config, set_config_field,
)
from atci.errors import ConfigError


class AtciConfigTests(unittest.TestCase):
    def setUp(self):
        self.tempdir = tempfile.TemporaryDirectory()
        self.addCleanup(self.tempdir.cleanup)
        self.root = Path(self.tempdir.name)
        self.config_path = self.root / "config.toml"

    def test_missing_file_yields_defaults(self):
        cfg = load_config(self.root / "absent.toml")
        self.assertTrue(cfg.allow_whisper)
        self.assertTrue(cfg.allow_subtitles)
        self.assertEqual(cfg.stream_chunk_size, 60)
        self.assertEqual(cfg.watch_directories, [])
        self.assertIsNone(cfg.password)
        self.assertEqual(cfg.queue_backend, "file")
        self.assertFalse(cfg.is_complete)

    def test_load_toml_record(self):
        self.config_path.write_text(
            'ffmpeg_path = "/opt/ffmpeg"\n'
            'ffprobe_path = "/opt/ffprobe"\n'
            'whispercli_path = "/opt/whisper-cli"\n'
            'model_name = "base.en"\n'
            'watch_directories = ["/videos", "/more"]\n'
            'allow_subtitles = false\n'
            'processing_success_command = "notify-send done"\n',
            encoding="utf-8",
        )
        cfg = load_config(self.config_path)
        self.assertEqual(cfg.ffmpeg_path, "/opt/ffmpeg")
        self.assertEqual(cfg.watch_directories, ["/videos", "/more"])
        self.assertFalse(cfg.allow_subtitles)
        self.assertTrue(cfg.allow_whisper)
        self.assertTrue(cfg.is_complete)
        cfg.validate_required()

    def test_unknown_key_rejected(self):
        self.config_path.write_text('colour = "blue"\n', encoding="utf-8")
        with self.assertRaises(ConfigError):
            load_config(self.config_path)

    def test_wrong_type_rejected(self):
        self.config_path.write_text('stream_chunk_size = "often"\n', encoding="utf-8")
        with self.assertRaises(ConfigError):
            load_config(self.config_path)

    def test_malformed_toml_rejected(self):
        self.config_path.write_text('ffmpeg_path = \n', encoding="utf-8")
        with self.assertRaises(ConfigError):
            load_config(self.config_path)

    def test_validate_required_names_every_missing_field(self):
        cfg = AtciConfig(ffmpeg_path="/opt/ffmpeg")
        with self.assertRaises(ConfigError) as ctx:
            cfg.validate_required()
        self.assertIn("ffprobe_path", str(ctx.exception))
        self.assertIn("whispercli_path", str(ctx.exception))
        self.assertNotIn("ffmpeg_path", str(ctx.exception))

    def test_validate_required_rejects_unknown_backend(self):
        cfg = AtciConfig(ffmpeg_path="a", ffprobe_path="b", whispercli_path="c", queue_backend="redis")
        with self.assertRaises(ConfigError):
            cfg.validate_required()

    def test_model_path(self):
        cfg = AtciConfig(model_name="small")
        self.assertEqual(cfg.model_path(self.root), self.root / "models" / "small.bin")

    def test_set_config_field(self):
        cfg = AtciConfig()
        set_config_field(cfg, "allow_whisper", "false")
        set_config_field(cfg, "stream_chunk_size", "30")
        set_config_field(cfg, "watch_directories", "/videos")
        set_config_field(cfg, "watch_directories", "/videos")
        set_config_field(cfg, "model_name", "tiny")

        self.assertFalse(cfg.allow_whisper)
        self.assertEqual(cfg.stream_chunk_size, 30)
        self.assertEqual(cfg.watch_directories, ["/videos"])
        self.assertEqual(cfg.model_name, "tiny")

    def test_set_config_field_errors(self):
        cfg = AtciConfig()
        with self.assertRaises(ConfigError):
            set_config_field(cfg, "colour", "blue")
        with self.assertRaises(ConfigError):
            set_config_field(cfg, "allow_whisper", "maybe")
        with self.assertRaises(ConfigError):
            set_config_field(cfg, "stream_chunk_size", "soon")
        with self.assertRaises(ConfigError):
            set_config_field(cfg, "stream_chunk_size", "0")

    def test_config_path_from_environment(self):
        with mock.patch.dict(os.environ, {"ATCI_CONFIG_PATH": str(self.config_path)}):
            self.assertEqual(get_config_path(), self.config_path)
            sha = get_config_path_sha()
        self.assertEqual(len(sha), 8)
        self.assertEqual(sha, get_config_path_sha(self.config_path))
        self.assertNotEqual(sha, get_config_path_sha(self.root / "other.toml"))


class WorkerConfigTests(unittest.TestCase):
    def test_from_env(self):
        env = {
            "ATCI_HOME": "/tmp/atci-home",
            "WORKER_IDLE_MS": "250",
            "WORKER_DEV_HTTP": "true",
            "WORKER_HTTP_PORT": "9000",
            "ATCI_TAKEOVER": "TRUE",
            "LOG_LEVEL": "DEBUG",
        }
        with mock.patch.dict(os.environ, env):
            config = WorkerConfig.from_env()
        self.assertEqual(config.ATCI_HOME, Path("/tmp/atci-home"))
        self.assertEqual(config.IDLE_INTERVAL_MS, 250)
        self.assertEqual(config.WATCH_INTERVAL_MS, 2000)
        self.assertEqual(config.CANCEL_POLL_MS, 500)
        self.assertTrue(config.ENABLE_HTTP_SERVER)
        self.assertEqual(config.HTTP_PORT, 9000)
        self.assertTrue(config.TAKEOVER)
        self.assertEqual(config.LOG_LEVEL, "DEBUG")
        config.validate()

    def test_non_numeric_env_rejected(self):
        with mock.patch.dict(os.environ, {"WORKER_IDLE_MS": "fast"}):
            with self.assertRaises(ConfigError):
                WorkerConfig.from_env()

    def test_validate_rejects_non_positive_intervals(self):
        config = WorkerConfig(IDLE_INTERVAL_MS=0, CANCEL_POLL_MS=-1)
        with self.assertRaises(ConfigError) as ctx:
            config.validate()
        self.assertIn("WORKER_IDLE_MS", str(ctx.exception))
        self.assertIn("CANCEL_POLL_MS", str(ctx.exception))


if __name__ == "__main__":
    unittest.main()
