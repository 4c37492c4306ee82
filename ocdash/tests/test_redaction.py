import random
import unittest

from ocdash.models import BackgroundTaskRow
from ocdash.redaction import SENSITIVE_KEYS, ensure_redacted, find_sensitive_keys, redact


def _random_tree(rng: random.Random, depth: int = 0):
    keys = ["prompt", "input", "output", "error", "state", "id", "tool", "nested", "items"]
    if depth > 3 or rng.random() < 0.2:
        return rng.choice([1, "text", None, 2.5, True])
    if rng.random() < 0.3:
        return [_random_tree(rng, depth + 1) for _ in range(rng.randint(0, 3))]
    return {rng.choice(keys): _random_tree(rng, depth + 1) for _ in range(rng.randint(0, 4))}


class RedactionTests(unittest.TestCase):
    def test_strips_sensitive_keys_at_any_depth(self) -> None:
        value = {
            "id": "x",
            "input": {"prompt": "SECRET"},
            "rows": [{"tool": "bash", "state": {"output": "HIDDEN"}}, ({"error": "boom", "ok": 1},)],
        }

        redacted = redact(value)

        self.assertEqual(redacted, {"id": "x", "rows": [{"tool": "bash"}, [{"ok": 1}]]})
        self.assertIn("input", value)

    def test_find_sensitive_keys_reports_paths(self) -> None:
        found = find_sensitive_keys({"a": [{"prompt": 1}], "state": {}})
        self.assertEqual(sorted(found), ["a[0].prompt", "state"])

    def test_models_are_dumped_before_redaction(self) -> None:
        row = BackgroundTaskRow(id="c1", description="d", agent="explore")
        self.assertEqual(redact(row)["id"], "c1")

    def test_generated_trees_never_keep_sensitive_keys(self) -> None:
        rng = random.Random(42)
        for _ in range(200):
            tree = _random_tree(rng)
            self.assertEqual(find_sensitive_keys(redact(tree)), [])

    def test_sensitive_key_set(self) -> None:
        self.assertEqual(SENSITIVE_KEYS, {"prompt", "input", "output", "error", "state"})

    def test_ensure_redacted_passes_clean_values_through(self) -> None:
        clean = {"rows": [{"tool": "read"}]}
        self.assertIs(ensure_redacted(clean, "test"), clean)

    def test_ensure_redacted_logs_and_strips_leaks(self) -> None:
        with self.assertLogs("ocdash.redaction", level="ERROR") as logs:
            result = ensure_redacted({"rows": [{"tool": "read", "state": {"x": 1}}]}, "test")

        self.assertEqual(result, {"rows": [{"tool": "read"}]})
        self.assertIn("rows[0].state", logs.output[0])


if __name__ == "__main__":
    unittest.main()
