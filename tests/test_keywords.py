import unittest

from kbgraph.graph.keywords import STOP_WORDS, KeywordExtractor, SummaryFields, tokenize


class TestTokenize(unittest.TestCase):
    def test_punctuation_becomes_space_and_short_tokens_drop(self):
        self.assertEqual(tokenize("Self-driving cars: the future!"), ["driving", "future"])

    def test_underscore_splits_tokens(self):
        self.assertEqual(tokenize("snake_case words"), ["snake", "words"])

    def test_digits_are_kept(self):
        self.assertEqual(tokenize("Python 3.12 release2024"), ["python", "release2024"])


class TestKeywordExtractor(unittest.TestCase):
    def setUp(self):
        self.ex = KeywordExtractor()

    def test_machine_learning_example(self):
        kw = self.ex.extract({"key_points": ["Machine learning models require training"]})
        self.assertEqual(kw, ("machine", "learning", "models", "require", "training"))

    def test_four_letter_words_are_filtered(self):
        kw = self.ex.extract({"key_points": ["Training machine learning systems needs data"]})
        self.assertEqual(kw, ("training", "machine", "learning", "systems", "needs"))
        self.assertNotIn("data", kw)

    def test_key_points_come_before_main_ideas_and_insights(self):
        summary = {
            "insights": ["gardens"],
            "main_ideas": ["rivers"],
            "key_points": ["mountains"],
        }
        self.assertEqual(self.ex.extract(summary), ("mountains", "rivers", "gardens"))

    def test_stop_words_removed(self):
        kw = self.ex.extract({"key_points": ["Learning between systems, which should matter"]})
        self.assertEqual(kw, ("learning", "systems", "matter"))
        self.assertTrue(STOP_WORDS.isdisjoint(kw))

    def test_dedup_keeps_first_occurrence_and_truncates_to_15(self):
        words = [f"keyword{i:02d}" for i in range(20)]
        summary = {
            "key_points": [" ".join(words[:10]), "keyword03 keyword01"],
            "main_ideas": [" ".join(words[10:])],
        }
        kw = self.ex.extract(summary)
        self.assertEqual(len(kw), 15)
        self.assertEqual(list(kw), words[:15])
        self.assertEqual(len(set(kw)), len(kw))

    def test_malformed_summaries_yield_empty(self):
        for bad in (None, "key_points", 42, [["machine learning"]], {"key_points": "machine learning"}, {}):
            with self.subTest(summary=bad):
                self.assertEqual(self.ex.extract(bad), ())

    def test_non_string_items_are_skipped(self):
        kw = self.ex.extract({"key_points": [1, None, {"x": "y"}, "valid tokens here"]})
        self.assertEqual(kw, ("valid", "tokens"))

    def test_unknown_fields_are_ignored(self):
        kw = self.ex.extract({"tags": ["quantum physics"], "main_ideas": ["entanglement"]})
        self.assertEqual(kw, ("entanglement",))

    def test_injected_configuration(self):
        ex = KeywordExtractor(stop_words={"machine"}, max_keywords=2)
        kw = ex.extract({"key_points": ["Machine learning models require training"]})
        self.assertEqual(kw, ("learning", "models"))

    def test_extraction_is_deterministic(self):
        summary = {"key_points": ["Neural networks approximate functions"], "main_ideas": ["Gradient descent"]}
        self.assertEqual(self.ex.extract(summary), self.ex.extract(summary))


class TestSummaryFields(unittest.TestCase):
    def test_from_json_keeps_only_string_arrays(self):
        f = SummaryFields.from_json({"key_points": ["a", 2], "main_ideas": "nope", "insights": ("x",)})
        self.assertEqual(f.key_points, ("a",))
        self.assertEqual(f.main_ideas, ())
        self.assertEqual(f.insights, ("x",))

    def test_from_json_non_mapping(self):
        self.assertEqual(SummaryFields.from_json(["key_points"]), SummaryFields())

    def test_sections_are_in_extraction_order(self):
        f = SummaryFields(key_points=("k",), main_ideas=("m",), insights=("i",))
        self.assertEqual(
            f.sections(),
            (("key_points", ("k",)), ("main_ideas", ("m",)), ("insights", ("i",))),
        )


if __name__ == "__main__":
    unittest.main()
