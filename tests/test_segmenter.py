"""Tests for script-aware word segmentation."""

from storyweaver.text.segmenter import Script, WordSegmenter, breaks_between, classify


def split(text: str) -> list[str]:
    return WordSegmenter().split(text)


class TestClassify:
    def test_latin_and_space(self):
        assert classify("a") == Script.OTHER
        assert classify(" ") == Script.SPACE
        assert classify("\n") == Script.SPACE

    def test_japanese_scripts(self):
        assert classify("あ") == Script.HIRAGANA
        assert classify("カ") == Script.KATAKANA
        assert classify("ｶ") == Script.KATAKANA  # half-width
        assert classify("本") == Script.KANJI
        assert classify("ー") == Script.PROLONG
        assert classify("々") == Script.PROLONG

    def test_punctuation_and_fullwidth(self):
        assert classify("。") == Script.CJK_PUNCT
        assert classify("「") == Script.CJK_PUNCT
        assert classify("！") == Script.CJK_PUNCT
        assert classify("Ａ") == Script.FULLWIDTH

    def test_hangul_is_space_delimited(self):
        assert classify("한") == Script.OTHER


class TestBreaksBetween:
    def test_kanji_to_hiragana_keeps_okurigana(self):
        assert not breaks_between(Script.KANJI, Script.HIRAGANA)

    def test_hiragana_to_kanji_breaks(self):
        assert breaks_between(Script.HIRAGANA, Script.KANJI)

    def test_same_script_never_breaks(self):
        assert not breaks_between(Script.KATAKANA, Script.KATAKANA)
        assert not breaks_between(Script.OTHER, Script.OTHER)

    def test_latin_next_to_cjk_breaks(self):
        assert breaks_between(Script.OTHER, Script.KANJI)
        assert breaks_between(Script.KANJI, Script.OTHER)


class TestSplitSpaceDelimited:
    def test_english_keeps_punctuation_attached(self):
        assert split("Hi Bob.") == ["Hi", "Bob."]

    def test_whitespace_runs_and_edges(self):
        assert split("  one \t two\nthree ") == ["one", "two", "three"]

    def test_korean(self):
        assert split("안녕 하세요") == ["안녕", "하세요"]

    def test_empty(self):
        assert split("") == []
        assert split("   ") == []


class TestSplitCJK:
    def test_okurigana_stays_with_stem(self):
        assert split("食べる") == ["食べる"]

    def test_katakana_to_hiragana_breaks_and_caps(self):
        assert split("カタカナです") == ["カタカ", "ナ", "です"]

    def test_hiragana_to_kanji_breaks(self):
        assert split("の本") == ["の", "本"]

    def test_segment_cap_for_chinese(self):
        assert split("我们喜欢你") == ["我们喜", "欢你"]

    def test_custom_cap(self):
        assert WordSegmenter(max_cjk_segment=2).split("東京都庁") == ["東京", "都庁"]

    def test_break_after_punctuation(self):
        assert split("はい。いいえ") == ["はい。", "いいえ"]

    def test_brackets_attach_to_their_words(self):
        assert split("「はい」") == ["「はい」"]

    def test_prolonged_sound_mark_continues_word(self):
        assert split("コーヒー") == ["コーヒー"]

    def test_latin_next_to_kanji(self):
        assert split("Tokyo東京") == ["Tokyo", "東京"]


def test_spans_cover_every_non_space_character():
    text = "Hello 世界、カタカナとひらがな！ ok"
    spans = WordSegmenter().spans(text)
    covered = "".join(text[s:e] for s, e in spans)
    assert covered == "".join(text.split())
    # Spans are ordered and disjoint
    for (_, end), (start, _) in zip(spans, spans[1:]):
        assert end <= start
