import unittest

from gamepanel.state import REQUIRED_STATE_KEYS, AppState, BackupState


def _namespace(**overrides):
    data = {key: None for key in REQUIRED_STATE_KEYS}
    data.update(overrides)
    return data


class AppStateTests(unittest.TestCase):
    def test_missing_members_are_reported(self):
        data = _namespace()
        del data["supervisor"]
        with self.assertRaises(KeyError):
            AppState(data)

    def test_from_namespace_ignores_unrelated_locals(self):
        state = AppState.from_namespace(_namespace(SERVER_JAR="paper.jar", cfg="ignored"))
        self.assertEqual(state.SERVER_JAR, "paper.jar")
        self.assertEqual(state["SERVER_JAR"], "paper.jar")
        self.assertEqual(len(state), len(REQUIRED_STATE_KEYS))

    def test_unknown_members_are_rejected(self):
        state = AppState(_namespace())
        with self.assertRaises(KeyError):
            state["SERVER_JARR"] = "x"
        with self.assertRaises(AttributeError):
            state.server_jar = "x"
        with self.assertRaises(AttributeError):
            state.server_jar
        with self.assertRaises(TypeError):
            del state["SERVER_JAR"]

    def test_attribute_writes_update_mapping(self):
        state = AppState(_namespace())
        state.supervisor = "replacement"
        self.assertEqual(state["supervisor"], "replacement")

    def test_backup_state_defaults(self):
        backup_state = BackupState()
        self.assertFalse(backup_state.run_lock.locked())
        self.assertEqual(backup_state.last_error, "")


if __name__ == "__main__":
    unittest.main()
