import unittest

from bundledeps.errors import ManifestInvalidError, VersionUnresolvableError
from bundledeps.jobs import Job, MessageSet


class TestJob(unittest.TestCase):
    def test_to_dict_shape(self) -> None:
        job = Job("building package test-package")
        with self.assertLogs("bundledeps.jobs", level="ERROR"):
            job.error("mime version 0.1.2 is not available in the npm registry")

        self.assertTrue(job.has_messages())
        self.assertEqual(
            job.to_dict(),
            {
                "jobTitle": "building package test-package",
                "messages": [{"message": "mime version 0.1.2 is not available in the npm registry"}],
            },
        )


class TestMessageSet(unittest.TestCase):
    def test_job_context_collects_errors_and_continues(self) -> None:
        messages = MessageSet()

        with self.assertLogs("bundledeps.jobs", level="ERROR"):
            with messages.job("building package a"):
                raise VersionUnresolvableError("mime", "0.1.2")
            with messages.job("building package b"):
                pass
            with messages.job("building package c"):
                raise ManifestInvalidError("gcd", "^1.0.0", "must declare an exact version or a source URL")

        self.assertTrue(messages.has_messages())
        self.assertEqual([j.title for j in messages.jobs], ["building package a", "building package b", "building package c"])
        self.assertEqual([j.title for j in messages.jobs if j.has_messages()], ["building package a", "building package c"])
        self.assertEqual(len(messages.to_list()), 2)
        self.assertEqual(messages.find_job("building package b").messages, [])
        self.assertIsNone(messages.find_job("nope"))

    def test_other_exceptions_propagate(self) -> None:
        messages = MessageSet()
        with self.assertRaises(KeyError):
            with messages.job("building package a"):
                raise KeyError("boom")

    def test_format_messages(self) -> None:
        messages = MessageSet()
        with self.assertLogs("bundledeps.jobs", level="ERROR"):
            messages.add_job("building package a").error("first")
        messages.add_job("building package b")

        self.assertEqual(messages.format_messages(), "While building package a:\nerror: first\n")
        self.assertEqual(messages.errors(), ["building package a: first"])

    def test_empty_set(self) -> None:
        messages = MessageSet()
        self.assertFalse(messages.has_messages())
        self.assertEqual(messages.format_messages(), "")
        self.assertEqual(messages.to_list(), [])


if __name__ == "__main__":
    unittest.main()
