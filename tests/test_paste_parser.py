from training_center_cbt.services.paste_parser import parse_pasted


def test_lettered_options_with_star_mark():
    parsed = parse_pasted("What is 2+2?\nA) 3\nB) 4 *\nC) 5\n")

    assert parsed.question == "What is 2+2?"
    assert [o.text for o in parsed.options] == ["3", "4", "5"]
    assert [o.label for o in parsed.options] == ["A", "B", "C"]
    assert parsed.correct_options == ["4"]


def test_mixed_prefixes():
    parsed = parse_pasted("Pick one\r\n(a) red\r\nb. green\r\n3- blue\r\n• yellow")

    assert [o.text for o in parsed.options] == ["red", "green", "blue", "yellow"]
    assert parsed.options[3].label is None
    assert parsed.correct_options == []


def test_answer_line_marks_labelled_option():
    parsed = parse_pasted("Which port is SSH?\nA. 21\nB. 22\nC. 23\nAnswer: b")

    assert parsed.correct_options == ["22"]
    assert all("Answer" not in o.text for o in parsed.options)


def test_correct_suffix():
    parsed = parse_pasted("Encrypted?\n- SSH (correct)\n- Telnet")
    assert parsed.correct_options == ["SSH"]


def test_lines_before_first_option_after_question_are_skipped():
    parsed = parse_pasted("Header line\nwith a second line\nA) yes\nB) no")

    assert parsed.question == "Header line"
    assert [o.text for o in parsed.options] == ["yes", "no"]


def test_no_options_returns_none():
    assert parse_pasted("") is None
    assert parse_pasted("   \n  ") is None
    assert parse_pasted("Just a sentence without options.") is None
