"""
Unit tests for registration credential resolution.
"""

import os
import tempfile
import unittest
from unittest.mock import MagicMock, patch

from credentials import CREDENTIAL_ENV_VAR, resolve_credential
from errors import ConfigurationError


class TestResolveCredential(unittest.TestCase):
    """Test credential source precedence."""

    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.env_file = os.path.join(self.tmpdir.name, ".env")
        self.env_patch = patch.dict(os.environ, {}, clear=False)
        self.env_patch.start()
        os.environ.pop(CREDENTIAL_ENV_VAR, None)

    def tearDown(self):
        self.env_patch.stop()
        self.tmpdir.cleanup()

    def _write_env_file(self, content):
        with open(self.env_file, "w") as f:
            f.write(content)

    def test_explicit_value_wins(self):
        os.environ[CREDENTIAL_ENV_VAR] = "from-env"
        self._write_env_file("GITHUB_PAT=from-file\n")
        prompt = MagicMock()

        value = resolve_credential("explicit", env_file=self.env_file, prompt=prompt)

        self.assertEqual(value, "explicit")
        prompt.assert_not_called()

    def test_blank_explicit_value_falls_through(self):
        os.environ[CREDENTIAL_ENV_VAR] = "from-env"
        self.assertEqual(resolve_credential("  \n", env_file=self.env_file), "from-env")

    def test_environment_variable(self):
        os.environ[CREDENTIAL_ENV_VAR] = "from-env"
        self._write_env_file("GITHUB_PAT=from-file\n")
        self.assertEqual(resolve_credential(env_file=self.env_file), "from-env")

    def test_env_file(self):
        self._write_env_file("# local secrets\nOTHER=1\nGITHUB_PAT=from-file\n")
        prompt = MagicMock()

        value = resolve_credential(env_file=self.env_file, prompt=prompt, interactive=True)

        self.assertEqual(value, "from-file")
        prompt.assert_not_called()

    def test_interactive_prompt(self):
        prompt = MagicMock(return_value="typed-pat\n")
        value = resolve_credential(env_file=self.env_file, prompt=prompt, interactive=True)
        self.assertEqual(value, "typed-pat")
        prompt.assert_called_once()

    def test_no_prompt_when_not_interactive(self):
        prompt = MagicMock(return_value="typed-pat")
        with self.assertRaises(ConfigurationError):
            resolve_credential(env_file=self.env_file, prompt=prompt, interactive=False)
        prompt.assert_not_called()

    def test_empty_prompt_answer(self):
        prompt = MagicMock(return_value="")
        with self.assertRaises(ConfigurationError):
            resolve_credential(env_file=self.env_file, prompt=prompt, interactive=True)

    def test_env_file_is_not_modified(self):
        self._write_env_file("OTHER=1\n")
        prompt = MagicMock(return_value="typed-pat")

        resolve_credential(env_file=self.env_file, prompt=prompt, interactive=True)

        with open(self.env_file) as f:
            self.assertEqual(f.read(), "OTHER=1\n")


if __name__ == "__main__":
    unittest.main()
