"""
Tests for the POSIX adapter.

Tests cover:
- Session scope reads and writes
- Managed profile block and system file encodings
- Reference expansion
- The write-verify-rollback protocol
- Restoring media from snapshots
"""

import os
import shutil
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from envm.adapters import InvalidScopeError, PosixAdapter, Scope
from envm.adapters.posix import quote, render_profile, render_system_env, unquote
from envm.backup import BackupStore

PROFILE_PREAMBLE = "# user settings\nalias ll='ls -l'\n"


class PosixTestCase(unittest.TestCase):
    """Base class providing an adapter whose media live in a temp directory."""

    def setUp(self) -> None:
        self.temp_dir = Path(tempfile.mkdtemp())
        self.profile = self.temp_dir / ".profile"
        self.system_env = self.temp_dir / "environment"
        self.store = BackupStore(self.temp_dir / "backups")
        self.adapter = PosixAdapter(
            self.store,
            profile_path=self.profile,
            system_env_path=self.system_env,
        )
        self._env_patch = patch.dict(os.environ)
        self._env_patch.start()

    def tearDown(self) -> None:
        self._env_patch.stop()
        shutil.rmtree(self.temp_dir, ignore_errors=True)


class TestQuoting(unittest.TestCase):
    """Tests for shell quoting helpers."""

    def test_quote_plain(self) -> None:
        self.assertEqual(quote("/usr/bin"), "'/usr/bin'")

    def test_quote_single_quote(self) -> None:
        self.assertEqual(quote("it's"), "'it'\\''s'")

    def test_unquote_round_trip(self) -> None:
        for value in ["", "plain", "it's", "a b c", "$HOME/bin", "''"]:
            with self.subTest(value=value):
                self.assertEqual(unquote(quote(value)), value)

    def test_unquote_double_and_bare(self) -> None:
        self.assertEqual(unquote('"/opt/bin"'), "/opt/bin")
        self.assertEqual(unquote("/opt/bin"), "/opt/bin")


class TestRenderProfile(unittest.TestCase):
    """Tests for managed block rewriting."""

    def test_block_appended_when_missing(self) -> None:
        """Test a new block is appended after existing content."""
        content = render_profile(PROFILE_PREAMBLE, "EDITOR", "vim")
        self.assertEqual(
            content,
            PROFILE_PREAMBLE + "# envm-begin\nexport EDITOR='vim'\n# envm-end\n",
        )

    def test_block_appended_without_trailing_newline(self) -> None:
        content = render_profile("echo hi", "EDITOR", "vim")
        self.assertTrue(content.startswith("echo hi\n# envm-begin\n"))

    def test_existing_entry_replaced_in_place(self) -> None:
        """Test the entry is replaced and content outside the block is preserved."""
        original = (
            PROFILE_PREAMBLE
            + "# envm-begin\nexport A='1'\nexport B='2'\n# envm-end\n"
            + "export B='outside'\n"
        )
        content = render_profile(original, "B", "3")
        self.assertEqual(
            content,
            PROFILE_PREAMBLE
            + "# envm-begin\nexport A='1'\nexport B='3'\n# envm-end\n"
            + "export B='outside'\n",
        )

    def test_entry_removed(self) -> None:
        original = "# envm-begin\nexport A='1'\nexport B='2'\n# envm-end\n"
        self.assertEqual(
            render_profile(original, "A", None),
            "# envm-begin\nexport B='2'\n# envm-end\n",
        )

    def test_remove_without_block_is_noop(self) -> None:
        self.assertEqual(render_profile(PROFILE_PREAMBLE, "A", None), PROFILE_PREAMBLE)


class TestRenderSystemEnv(unittest.TestCase):
    """Tests for system file rewriting."""

    def test_append_to_empty(self) -> None:
        self.assertEqual(render_system_env("", "LANG", "C"), "LANG='C'\n")

    def test_append_keeps_trailing_newline(self) -> None:
        content = render_system_env("PATH='/usr/bin'\n", "LANG", "C")
        self.assertEqual(content, "PATH='/usr/bin'\nLANG='C'\n")

    def test_replace(self) -> None:
        content = render_system_env("PATH=/usr/bin\nLANG='C'\n", "PATH", "/bin")
        self.assertEqual(content, "PATH='/bin'\nLANG='C'\n")

    def test_prefix_names_untouched(self) -> None:
        """Test PATH does not match PATHEXT."""
        content = render_system_env("PATHEXT='x'\n", "PATH", "/bin")
        self.assertEqual(content, "PATHEXT='x'\nPATH='/bin'\n")

    def test_remove(self) -> None:
        content = render_system_env("PATH='/usr/bin'\nLANG='C'\n", "LANG", None)
        self.assertEqual(content, "PATH='/usr/bin'\n")


class TestSessionScope(PosixTestCase):
    """Tests for session scope."""

    def test_set_get_unset(self) -> None:
        """Test session mutations go straight to os.environ."""
        result = self.adapter.set("ENVM_TEST_VAR", "bar", Scope.SESSION)

        self.assertTrue(result.ok)
        self.assertTrue(result.verification)
        self.assertIsNone(result.rollback)
        self.assertEqual(os.environ["ENVM_TEST_VAR"], "bar")
        self.assertEqual(self.adapter.get_raw("ENVM_TEST_VAR", "session"), "bar")

        result = self.adapter.unset("ENVM_TEST_VAR", "session")

        self.assertTrue(result.ok)
        self.assertEqual(result.previous, "bar")
        self.assertIsNone(self.adapter.get_raw("ENVM_TEST_VAR", "session"))

    def test_session_never_backs_up(self) -> None:
        self.adapter.set("ENVM_TEST_VAR", "bar", "session")
        self.assertEqual(self.store.list("session"), [])

    def test_names_are_case_sensitive(self) -> None:
        self.adapter.set("ENVM_lower", "a", "session")
        self.assertIsNone(self.adapter.get_raw("ENVM_LOWER", "session"))

    def test_invalid_scope(self) -> None:
        with self.assertRaises(InvalidScopeError):
            self.adapter.get_raw("PATH", "global")


class TestExpansion(PosixTestCase):
    """Tests for get_expanded."""

    def test_no_references(self) -> None:
        self.adapter.set("FOO", "bar", "session")
        self.assertEqual(self.adapter.get_expanded("FOO", "session"), "bar")

    def test_dollar_reference(self) -> None:
        os.environ["HOME"] = "/home/u"
        os.environ["ENVM_BIN"] = "$HOME/bin"
        self.assertEqual(self.adapter.get_expanded("ENVM_BIN", "session"), "/home/u/bin")

    def test_braced_reference(self) -> None:
        os.environ["ENVM_ROOT"] = "/opt"
        os.environ["ENVM_BIN"] = "${ENVM_ROOT}/bin"
        self.assertEqual(self.adapter.get_expanded("ENVM_BIN", "session"), "/opt/bin")

    def test_unknown_reference_becomes_empty(self) -> None:
        os.environ.pop("ENVM_MISSING", None)
        os.environ["ENVM_BIN"] = "$ENVM_MISSING/bin"
        self.assertEqual(self.adapter.get_expanded("ENVM_BIN", "session"), "/bin")

    def test_self_reference_left_literal(self) -> None:
        """Test a variable referring to itself keeps the literal token."""
        os.environ["FOO"] = "$FOO"
        self.assertEqual(self.adapter.get_expanded("FOO", "session"), "$FOO")

        os.environ["FOO"] = "/extra:${FOO}"
        self.assertEqual(self.adapter.get_expanded("FOO", "session"), "/extra:${FOO}")

    def test_single_pass(self) -> None:
        """Test a chain only resolves one level."""
        os.environ["ENVM_C"] = "/c"
        os.environ["ENVM_B"] = "$ENVM_C"
        os.environ["ENVM_A"] = "$ENVM_B"
        self.assertEqual(self.adapter.get_expanded("ENVM_A", "session"), "$ENVM_C")

    def test_expands_persistent_scope_from_environment(self) -> None:
        os.environ["HOME"] = "/home/u"
        self.adapter.set("ENVM_BIN", "$HOME/bin", "user")
        self.assertEqual(self.adapter.get_expanded("ENVM_BIN", "user"), "/home/u/bin")

    def test_expand_across_scopes(self) -> None:
        """Test references missing from the environment fall back to persistent media."""
        os.environ.pop("ENVM_ROOT", None)
        self.adapter.set("ENVM_ROOT", "/srv", "system")
        self.adapter.set("ENVM_BIN", "$ENVM_ROOT/bin", "user")

        self.assertEqual(self.adapter.get_expanded("ENVM_BIN", "user"), "/bin")
        self.assertEqual(
            self.adapter.get_expanded("ENVM_BIN", "user", expand_across_scopes=True),
            "/srv/bin",
        )

    def test_absent_and_empty(self) -> None:
        self.assertIsNone(self.adapter.get_expanded("ENVM_NOPE", "user"))
        os.environ["ENVM_EMPTY"] = ""
        self.assertEqual(self.adapter.get_expanded("ENVM_EMPTY", "session"), "")


class TestUserScope(PosixTestCase):
    """Tests for the managed profile block."""

    def test_missing_profile_reads_absent(self) -> None:
        self.assertIsNone(self.adapter.get_raw("EDITOR", "user"))

    def test_set_creates_block_and_preserves_content(self) -> None:
        self.profile.write_text(PROFILE_PREAMBLE)

        result = self.adapter.set("EDITOR", "vim", "user")

        self.assertTrue(result.ok)
        self.assertTrue(result.verification)
        self.assertIsNone(result.rollback)
        self.assertIn(str(self.profile), result.notes)
        content = self.profile.read_text()
        self.assertTrue(content.startswith(PROFILE_PREAMBLE))
        self.assertIn("# envm-begin\nexport EDITOR='vim'\n# envm-end", content)
        self.assertEqual(self.adapter.get_raw("EDITOR", "user"), "vim")

    def test_set_replaces_and_reports_previous(self) -> None:
        self.adapter.set("EDITOR", "vim", "user")
        result = self.adapter.set("EDITOR", "nano", "user")

        self.assertEqual(result.previous, "vim")
        self.assertEqual(self.adapter.get_raw("EDITOR", "user"), "nano")
        self.assertEqual(self.profile.read_text().count("export EDITOR="), 1)

    def test_exports_outside_block_ignored(self) -> None:
        self.profile.write_text("export EDITOR='emacs'\n")
        self.assertIsNone(self.adapter.get_raw("EDITOR", "user"))

    def test_value_with_quote(self) -> None:
        self.adapter.set("GREETING", "it's here", "user")
        self.assertEqual(self.adapter.get_raw("GREETING", "user"), "it's here")

    def test_unset(self) -> None:
        self.adapter.set("EDITOR", "vim", "user")
        self.adapter.set("PAGER", "less", "user")

        result = self.adapter.unset("EDITOR", "user")

        self.assertTrue(result.ok)
        self.assertIsNone(result.new_value)
        self.assertIsNone(self.adapter.get_raw("EDITOR", "user"))
        self.assertEqual(self.adapter.get_raw("PAGER", "user"), "less")

    def test_unset_absent_does_not_create_profile(self) -> None:
        result = self.adapter.unset("EDITOR", "user")
        self.assertTrue(result.ok)
        self.assertFalse(self.profile.exists())

    def test_backup_taken_before_write(self) -> None:
        self.profile.write_text(PROFILE_PREAMBLE)

        result = self.adapter.set("EDITOR", "vim", "user")

        self.assertIsNotNone(result.backup_path)
        self.assertEqual(result.backup_path.read_text(), PROFILE_PREAMBLE)
        self.assertEqual(self.store.list("user"), [result.backup_path.name])

    def test_backup_disabled(self) -> None:
        result = self.adapter.set("EDITOR", "vim", "user", backup=False)
        self.assertTrue(result.ok)
        self.assertIsNone(result.backup_path)
        self.assertEqual(self.store.list("user"), [])

    def test_line_break_rejected(self) -> None:
        self.profile.write_text(PROFILE_PREAMBLE)

        result = self.adapter.set("EDITOR", "vim\nrm -rf ~", "user")

        self.assertFalse(result.ok)
        self.assertFalse(result.verification)
        self.assertIsNone(result.rollback)
        self.assertEqual(self.profile.read_text(), PROFILE_PREAMBLE)

    @unittest.skipUnless(hasattr(os, "symlink"), "symlinks not supported")
    def test_symlinked_profile_keeps_link(self) -> None:
        real = self.temp_dir / "dotfiles-profile"
        real.write_text(PROFILE_PREAMBLE)
        self.profile.symlink_to(real)

        self.adapter.set("EDITOR", "vim", "user")

        self.assertTrue(self.profile.is_symlink())
        self.assertIn("export EDITOR='vim'", real.read_text())


class TestSystemScope(PosixTestCase):
    """Tests for the system environment file."""

    def test_set_get_unset(self) -> None:
        self.system_env.write_text("PATH='/usr/bin'\n")

        result = self.adapter.set("LANG", "C.UTF-8", "system")

        self.assertTrue(result.ok)
        self.assertEqual(self.system_env.read_text(), "PATH='/usr/bin'\nLANG='C.UTF-8'\n")
        self.assertEqual(self.adapter.get_raw("LANG", "system"), "C.UTF-8")
        self.assertEqual(self.adapter.get_raw("PATH", "system"), "/usr/bin")

        result = self.adapter.unset("LANG", "system")

        self.assertTrue(result.ok)
        self.assertIsNone(self.adapter.get_raw("LANG", "system"))

    def test_unquoted_values_read(self) -> None:
        self.system_env.write_text('PATH=/usr/bin\nLANG="C"\n')
        self.assertEqual(self.adapter.get_raw("PATH", "system"), "/usr/bin")
        self.assertEqual(self.adapter.get_raw("LANG", "system"), "C")

    def test_missing_file_reads_absent(self) -> None:
        self.assertIsNone(self.adapter.get_raw("PATH", "system"))

    def test_write_failure_reported(self) -> None:
        """Test an I/O failure becomes a failed result, not an exception."""
        self.system_env.write_text("PATH='/usr/bin'\n")

        with patch("envm.adapters.posix.os.replace", side_effect=PermissionError("denied")):
            result = self.adapter.set("LANG", "C", "system")

        self.assertFalse(result.ok)
        self.assertFalse(result.verification)
        self.assertIsNone(result.rollback)
        self.assertTrue(any("denied" in note for note in result.notes))
        self.assertEqual(self.system_env.read_text(), "PATH='/usr/bin'\n")

    def test_backup_failure_aborts_write(self) -> None:
        self.system_env.write_text("PATH='/usr/bin'\n")

        with patch.object(self.store, "create_backup", side_effect=OSError("disk full")):
            result = self.adapter.set("LANG", "C", "system")

        self.assertFalse(result.ok)
        self.assertTrue(any("disk full" in note for note in result.notes))
        self.assertEqual(self.system_env.read_text(), "PATH='/usr/bin'\n")


class TestVerifyAndRollback(PosixTestCase):
    """Tests for verification failures and rollback."""

    def setUp(self) -> None:
        super().setUp()
        self.original = PROFILE_PREAMBLE + "# envm-begin\nexport EDITOR='vim'\n# envm-end\n"
        self.profile.write_text(self.original)

    def test_verification_failure_rolls_back(self) -> None:
        """Test a mismatching re-read restores the snapshot."""
        with patch.object(PosixAdapter, "_read_value", return_value="something else"):
            result = self.adapter.set("EDITOR", "nano", "user")

        self.assertFalse(result.ok)
        self.assertFalse(result.verification)
        self.assertTrue(result.rollback)
        self.assertEqual(self.profile.read_text(), self.original)

    def test_unset_verification_failure_rolls_back(self) -> None:
        with patch.object(PosixAdapter, "_read_value", return_value="vim"):
            result = self.adapter.unset("EDITOR", "user")

        self.assertFalse(result.ok)
        self.assertTrue(result.rollback)
        self.assertEqual(self.profile.read_text(), self.original)

    def test_no_rollback_when_disabled(self) -> None:
        with patch.object(PosixAdapter, "_read_value", return_value="something else"):
            result = self.adapter.set("EDITOR", "nano", "user", rollback_on_fail=False)

        self.assertFalse(result.ok)
        self.assertIsNone(result.rollback)
        self.assertIn("export EDITOR='nano'", self.profile.read_text())

    def test_no_rollback_without_backup(self) -> None:
        with patch.object(PosixAdapter, "_read_value", return_value="something else"):
            result = self.adapter.set("EDITOR", "nano", "user", backup=False)

        self.assertFalse(result.ok)
        self.assertIsNone(result.rollback)
        self.assertIn("export EDITOR='nano'", self.profile.read_text())

    def test_rollback_failure_reported(self) -> None:
        with patch.object(PosixAdapter, "_read_value", return_value="something else"), \
                patch.object(PosixAdapter, "_restore_snapshot", side_effect=OSError("read-only")):
            result = self.adapter.set("EDITOR", "nano", "user")

        self.assertFalse(result.ok)
        self.assertFalse(result.rollback)

    def test_verify_disabled(self) -> None:
        """Test ok reflects the write alone when verification is off."""
        with patch.object(PosixAdapter, "_read_value", return_value="something else"):
            result = self.adapter.set("EDITOR", "nano", "user", verify=False)

        self.assertTrue(result.ok)
        self.assertIsNone(result.verification)
        self.assertIsNone(result.rollback)


class TestNonUtf8Media(PosixTestCase):
    """Tests for media holding bytes that are not valid UTF-8."""

    PREAMBLE = b"# caf\xe9 alias\nexport LANG=C\n"

    def setUp(self) -> None:
        super().setUp()
        self.profile.write_bytes(self.PREAMBLE)

    def test_get_raw_absent(self) -> None:
        self.assertIsNone(self.adapter.get_raw("FOO", "user"))

    def test_set_preserves_foreign_bytes(self) -> None:
        result = self.adapter.set("FOO", "bar", "user")

        self.assertTrue(result.ok)
        self.assertEqual(self.adapter.get_raw("FOO", "user"), "bar")
        content = self.profile.read_bytes()
        self.assertTrue(content.startswith(self.PREAMBLE))
        self.assertIn(b"export FOO='bar'\n", content)

    def test_snapshot_holds_foreign_bytes(self) -> None:
        result = self.adapter.set("FOO", "bar", "user")

        self.assertEqual(result.backup_path.read_bytes(), self.PREAMBLE)

    def test_rollback_restores_foreign_bytes(self) -> None:
        with patch.object(PosixAdapter, "_read_value", return_value="something else"):
            result = self.adapter.set("FOO", "bar", "user")

        self.assertTrue(result.rollback)
        self.assertEqual(self.profile.read_bytes(), self.PREAMBLE)

    def test_restore_by_id_restores_foreign_bytes(self) -> None:
        result = self.adapter.set("FOO", "bar", "user")

        self.assertTrue(self.store.restore(result.backup_path.name, self.adapter))
        self.assertEqual(self.profile.read_bytes(), self.PREAMBLE)

    def test_system_file(self) -> None:
        self.system_env.write_bytes(b"# \xff\xfe\nLANG='C'\n")

        result = self.adapter.set("FOO", "bar", "system")

        self.assertTrue(result.ok)
        self.assertEqual(self.adapter.get_raw("LANG", "system"), "C")
        self.assertTrue(self.system_env.read_bytes().startswith(b"# \xff\xfe\n"))


class TestRestoreFromBackup(PosixTestCase):
    """Tests for restore_from_backup."""

    def test_restore_user_profile(self) -> None:
        self.profile.write_text("changed\n")
        self.assertTrue(self.adapter.restore_from_backup("original\n", "user", "PATH"))
        self.assertEqual(self.profile.read_text(), "original\n")

    def test_restore_system_file(self) -> None:
        self.assertTrue(self.adapter.restore_from_backup("LANG='C'\n", Scope.SYSTEM))
        self.assertEqual(self.system_env.read_text(), "LANG='C'\n")

    def test_restore_session_rejected(self) -> None:
        self.assertFalse(self.adapter.restore_from_backup("x", "session"))

    def test_restore_io_failure(self) -> None:
        with patch("envm.adapters.posix.os.replace", side_effect=PermissionError("denied")):
            self.assertFalse(self.adapter.restore_from_backup("x", "system"))

    def test_store_restore_round_trip(self) -> None:
        """Test a snapshot taken by set can be replayed through the store."""
        self.profile.write_text(PROFILE_PREAMBLE)
        result = self.adapter.set("EDITOR", "vim", "user")

        self.assertTrue(self.store.restore(result.backup_path.name, self.adapter))
        self.assertEqual(self.profile.read_text(), PROFILE_PREAMBLE)
        self.assertIsNone(self.adapter.get_raw("EDITOR", "user"))


class TestDefaults(unittest.TestCase):
    """Tests for default medium locations."""

    def test_default_paths(self) -> None:
        adapter = PosixAdapter()
        self.assertEqual(adapter.profile_path, Path.home() / ".profile")
        self.assertEqual(adapter.system_env_path, Path("/etc/environment"))
        self.assertEqual(adapter.delimiter, ":")
        self.assertFalse(adapter.case_insensitive)


if __name__ == "__main__":
    unittest.main()
