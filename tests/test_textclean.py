from pupu.core.textclean import clean_text_for_speech


def test_markdown_and_link_are_stripped():
    assert clean_text_for_speech("**Hi** [here](http://x)") == "Hi here"


def test_urls_and_www_are_removed():
    text = "See https://example.com/page and www.example.org for more"
    assert clean_text_for_speech(text) == "See and for more"


def test_headers_code_and_emphasis():
    text = "## Title\nUse `pip` and *really* __care__"
    assert clean_text_for_speech(text) == "Title Use pip and really care"


def test_pipes_entities_and_whitespace():
    text = "a | b &amp; c\n\n   d"
    assert clean_text_for_speech(text) == "a , b c d"


def test_empty_input():
    assert clean_text_for_speech("") == ""
    assert clean_text_for_speech("   ") == ""


def test_header_markers_inside_a_line():
    assert clean_text_for_speech("Result: ## Title") == "Result: Title"
    assert clean_text_for_speech("Issue #42 is open") == "Issue #42 is open"
