import unittest

from devmentor.context import CONTEXT_SIZE_LIMITS, ContextPayload, SimpleContext, bound, merge, sanitize
from devmentor.context.assembler import REDACTED, redact_url, with_history
from devmentor.context.limits import PreviousMessage
from devmentor.context.prompt_builder import TRUNCATION_MARKER, build_context_prompt
from devmentor.memory.models import SessionRecord


def _session(session_type: str = "devops", system_prompt: str | None = None) -> SessionRecord:
    return SessionRecord(
        id="session_1",
        name="s",
        type=session_type,
        status="active",
        model="gpt-4.1",
        system_prompt=system_prompt,
        custom_agent="devops-mentor" if session_type == "devops" else None,
        message_count=0,
        created_at="2024-01-01T00:00:00.000+00:00",
        updated_at="2024-01-01T00:00:00.000+00:00",
    )


class RedactionTests(unittest.TestCase):
    def test_sensitive_query_parameters_are_masked(self) -> None:
        url = redact_url("https://ci.example.com/run?id=7&token=abc123&Secret=s")
        self.assertIn("id=7", url)
        self.assertIn(f"token={REDACTED}", url)
        self.assertIn(f"Secret={REDACTED}", url)
        self.assertNotIn("abc123", url)

    def test_url_without_query_is_unchanged(self) -> None:
        self.assertEqual("https://example.com/a", redact_url("https://example.com/a"))

    def test_sanitize_masks_credentials_in_page_text(self) -> None:
        payload = sanitize(
            ContextPayload(
                page_url="https://example.com/?password=hunter2",
                visible_text="Authorization: Bearer eyJhbGciOi.x.y and api_key=sk123",
                selected_text="password: hunter2",
            )
        )
        self.assertNotIn("hunter2", payload.page_url)
        self.assertNotIn("eyJhbGciOi", payload.visible_text)
        self.assertNotIn("sk123", payload.visible_text)
        self.assertEqual(REDACTED, payload.selected_text)

    def test_redaction_that_overflows_the_budget_is_flagged(self) -> None:
        text = "x" * (CONTEXT_SIZE_LIMITS["visibleText"] - 8) + "token=ab"
        payload = sanitize(ContextPayload(visible_text=text))
        self.assertEqual(CONTEXT_SIZE_LIMITS["visibleText"], len(payload.visible_text))
        self.assertEqual(("visibleText",), payload.truncated_fields)


class HistoryTests(unittest.TestCase):
    def test_history_fills_only_an_empty_payload(self) -> None:
        history = [PreviousMessage("user", "hi"), PreviousMessage("assistant", "hello")]
        filled = with_history(ContextPayload(), history, 9)
        self.assertEqual(2, len(filled.previous_messages))
        self.assertEqual(9, filled.previous_message_count)

        supplied = ContextPayload(previous_messages=(PreviousMessage("user", "mine"),), previous_message_count=1)
        self.assertIs(supplied, with_history(supplied, history, 9))


class MergeTests(unittest.TestCase):
    def test_plain_prompt_keeps_the_user_text(self) -> None:
        effective = merge(_session(), "Why is my pod pending?")
        self.assertEqual("plain", effective.mode)
        self.assertEqual("Why is my pod pending?", effective.user)
        self.assertIn("You are a DevOps mentor", effective.system)
        self.assertTrue(effective.text.endswith("Why is my pod pending?"))

    def test_general_session_has_no_system_text(self) -> None:
        effective = merge(_session("general"), "hello")
        self.assertIsNone(effective.system)
        self.assertEqual("hello", effective.text)

    def test_explicit_system_prompt_is_used(self) -> None:
        effective = merge(_session(system_prompt="Be brief."), "hello")
        self.assertEqual("Be brief.", effective.system)

    def test_simple_context_is_prefixed(self) -> None:
        effective = merge(
            _session(),
            "What does this mean?",
            simple=SimpleContext(page_url="https://x.io/?auth=zzz", page_title="Build #4", selected_text="exit 137"),
        )
        self.assertEqual("simple", effective.mode)
        self.assertIn("- Page Title: Build #4", effective.user)
        self.assertIn('- Selected Text: "exit 137"', effective.user)
        self.assertNotIn("zzz", effective.user)
        self.assertTrue(effective.user.endswith("**Question:** What does this mean?"))

    def test_context_aware_prompt_ends_with_the_user_message(self) -> None:
        raw = {
            "page": {"url": "https://github.com/o/r/actions", "title": "CI", "platform": {"type": "github"}},
            "text": {
                "visibleText": "build failed",
                "errors": [{"message": "Process completed with exit code 1", "severity": "high"}],
            },
        }
        effective = merge(_session(), "Fix it", context=raw)
        self.assertEqual("context-aware", effective.mode)
        self.assertIn("# Browser Context", effective.user)
        self.assertIn("**[HIGH]** Process completed with exit code 1", effective.user)
        self.assertTrue(effective.user.endswith("---\n\n## User Message\nFix it\n"))

    def test_long_context_is_cut_but_keeps_the_user_message(self) -> None:
        payload = bound({"text": {"selectedText": "kubectl get pods\n" * 250}})
        prompt = build_context_prompt(payload, "Still here?", max_context_length=3_000)
        self.assertLessEqual(len(prompt), 3_000)
        self.assertIn(TRUNCATION_MARKER, prompt)
        self.assertTrue(prompt.endswith("## User Message\nStill here?\n"))


if __name__ == "__main__":
    unittest.main()
