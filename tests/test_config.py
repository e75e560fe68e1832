from pathlib import Path
from tempfile import TemporaryDirectory
import unittest

from retropack.config import AppConfig, load_config
from retropack.models import Platform


class ConfigTest(unittest.TestCase):
    def test_load_config(self) -> None:
        with TemporaryDirectory() as temp_dir:
            root = Path(temp_dir)
            config_path = root / "retropack.yaml"
            config_path.write_text(
                """
tools:
  chdman: /opt/mame/chdman
output_dir: "./converted"
log: "./retropack.log"
concurrency: 3
platform: PS2
compression:
  preset: max
chd:
  hunk_size: 4096
  media_type: dvd
dolphin:
  format: wia
  scrub: true
""".strip(),
                encoding="utf-8",
            )
            config = load_config(config_path)
            self.assertEqual(config.tools.chdman, "/opt/mame/chdman")
            self.assertEqual(config.tools.dolphin_tool, "DolphinTool")
            assert config.output_dir is not None
            self.assertEqual(config.output_dir.resolve(), (root / "converted").resolve())
            self.assertEqual(config.concurrency, 3)
            self.assertEqual(config.platform, Platform.PS2)
            self.assertEqual(config.poll.interval_seconds, 1.0)

            settings = config.job_settings()
            self.assertEqual(settings.preset, "max")
            self.assertEqual(settings.chd.hunk_size, 4096)
            self.assertEqual(settings.chd.media_type, "dvd")
            self.assertEqual(settings.dolphin.format, "wia")
            self.assertTrue(settings.dolphin.scrub)

    def test_defaults_without_file(self) -> None:
        config = load_config(None)
        self.assertIsInstance(config, AppConfig)
        self.assertIsNone(config.output_dir)
        self.assertTrue(2 <= config.concurrency <= 16)
        self.assertEqual(config.termination.timeout_seconds, 2.0)

    def test_invalid_values(self) -> None:
        cases = [
            "- not\n- a mapping\n",
            "concurrency: 17\n",
            "compression:\n  preset: ultra\n",
            "chd:\n  media_type: bluray\n",
            "platform: snes\n",
            "poll: 5\n",
        ]
        with TemporaryDirectory() as temp_dir:
            config_path = Path(temp_dir) / "retropack.yaml"
            for body in cases:
                with self.subTest(body=body):
                    config_path.write_text(body, encoding="utf-8")
                    with self.assertRaises(ValueError):
                        load_config(config_path)


if __name__ == "__main__":
    unittest.main()
