import random
import unittest

from turnloop.stream_classifier import Channel, StreamClassifier


def _classify(fragments: list[str]) -> tuple[StreamClassifier, list, tuple[str | None, str]]:
    classifier = StreamClassifier()
    deltas = [classifier.process(f) for f in fragments]
    deltas.append(classifier.flush())
    return classifier, deltas, classifier.finalize()


def _random_split(text: str, rng: random.Random) -> list[str]:
    pieces: list[str] = []
    pos = 0
    while pos < len(text):
        size = rng.randint(1, 6)
        pieces.append(text[pos:pos + size])
        pos += size
    return pieces


_SAMPLES = [
    "Hello, world!",
    "<think>Reasoning about it</think>The answer is 42.",
    "Intro <think>step one\nstep two</think> and done",
    "Code:\n```python\nprint('<think>not a tag</think>')\n```\nAfter",
    "<think>Planning ```code``` inside thought</think>Visible ``` fenced <think> ``` tail",
    "a < b and c </ d, `tick` <thin>",
    "<think>never closed, still thinking",
    "Preamble</think>Visible part",
    "``````<think>x</think>y",
]


class StreamClassifierTests(unittest.TestCase):
    def test_plain_text_is_visible(self) -> None:
        _, deltas, final = _classify(["Hello, ", "world!"])
        self.assertEqual((None, "Hello, world!"), final)
        self.assertEqual("Hello, ", deltas[0].visible)
        self.assertIsNone(deltas[0].thinking)

    def test_think_tags_split_channels(self) -> None:
        _, deltas, final = _classify(["<think>", "Reasoning...", "</think>", "Answer"])
        self.assertEqual(("Reasoning...", "Answer"), final)
        self.assertEqual("Reasoning...", deltas[1].thinking)
        self.assertEqual((), deltas[2].segments)
        self.assertEqual("Answer", deltas[3].visible)

    def test_tags_are_not_emitted(self) -> None:
        _, deltas, _ = _classify(["<think>a</think>b"])
        emitted = "".join(s.text for d in deltas for s in d.segments)
        self.assertEqual("ab", emitted)

    def test_segments_preserve_stream_order(self) -> None:
        classifier = StreamClassifier()
        delta = classifier.process("x<think>y</think>z")
        self.assertEqual(
            [(Channel.VISIBLE, "x"), (Channel.THINKING, "y"), (Channel.VISIBLE, "z")],
            [(s.channel, s.text) for s in delta.segments],
        )

    def test_partial_open_tag_is_held_back(self) -> None:
        classifier = StreamClassifier()
        first = classifier.process("Hi <thi")
        self.assertEqual("Hi ", first.visible)
        second = classifier.process("nk>deep")
        self.assertEqual("deep", second.thinking)
        self.assertIsNone(second.visible)

    def test_held_text_that_is_not_a_tag_is_released(self) -> None:
        classifier = StreamClassifier()
        self.assertEqual("a ", classifier.process("a <").visible)
        self.assertEqual("< b", classifier.process(" b").visible)

    def test_flush_releases_pending_text(self) -> None:
        classifier = StreamClassifier()
        classifier.process("ends with `")
        self.assertEqual("`", classifier.flush().visible)
        self.assertEqual((None, "ends with `"), classifier.finalize())

    def test_tags_inside_code_fence_are_literal(self) -> None:
        text = "```\n<think>x</think>\n```"
        _, _, final = _classify([text])
        self.assertEqual((None, text), final)

    def test_fence_inside_thinking_protects_close_tag(self) -> None:
        _, _, final = _classify(["<think>```</think>```</think>done"])
        self.assertEqual(("```</think>```", "done"), final)

    def test_code_mode_only_holds_fence_prefixes(self) -> None:
        classifier = StreamClassifier()
        classifier.process("```\n")
        self.assertTrue(classifier.in_code_block)
        self.assertEqual("<thi", classifier.process("<thi").visible)

    def test_orphaned_close_tag_reclassifies_once(self) -> None:
        _, deltas, final = _classify(["A", "</think>", "B"])
        self.assertEqual(("A", "B"), final)
        self.assertEqual([False, True, False, False], [d.reclassified for d in deltas])
        self.assertEqual("A", deltas[1].thinking)

    def test_orphaned_close_tag_in_single_fragment(self) -> None:
        classifier = StreamClassifier()
        delta = classifier.process("A</think>B")
        self.assertTrue(delta.reclassified)
        self.assertEqual("A", delta.thinking)
        self.assertEqual("B", delta.visible)

    def test_second_stray_close_tag_is_dropped(self) -> None:
        _, deltas, final = _classify(["A</think>B", "</think>C"])
        self.assertEqual(("A", "BC"), final)
        self.assertFalse(deltas[1].reclassified)

    def test_unterminated_reasoning_stays_thinking(self) -> None:
        classifier, _, final = _classify(["<think>still ", "going"])
        self.assertEqual(("still going", ""), final)
        self.assertTrue(classifier.in_think)

    def test_finalize_trims_whitespace(self) -> None:
        _, _, final = _classify(["<think>\n  idea \n</think>\n\nAnswer\n"])
        self.assertEqual(("idea", "Answer"), final)

    def test_reset_clears_state(self) -> None:
        classifier = StreamClassifier()
        classifier.process("<think>abc")
        classifier.reset()
        classifier.process("visible")
        self.assertEqual((None, "visible"), classifier.finalize())

    def test_fragmentation_does_not_change_result(self) -> None:
        rng = random.Random(1234)
        for sample in _SAMPLES:
            expected = _classify([sample])[2]
            for _ in range(50):
                fragments = _random_split(sample, rng)
                with self.subTest(sample=sample, fragments=fragments):
                    self.assertEqual(expected, _classify(fragments)[2])

    def test_single_character_fragments(self) -> None:
        for sample in _SAMPLES:
            with self.subTest(sample=sample):
                self.assertEqual(_classify([sample])[2], _classify(list(sample))[2])

    def test_reclassification_flag_raised_exactly_once_under_fragmentation(self) -> None:
        rng = random.Random(99)
        text = "A</think>B"
        for _ in range(30):
            fragments = _random_split(text, rng)
            _, deltas, final = _classify(fragments)
            with self.subTest(fragments=fragments):
                self.assertEqual(1, sum(d.reclassified for d in deltas))
                self.assertEqual(("A", "B"), final)


if __name__ == "__main__":
    unittest.main()
