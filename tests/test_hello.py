from slambox.hello import main, print_hello


def test_print_hello_writes_library_greeting(capsys):
    print_hello()
    captured = capsys.readouterr()
    assert captured.out == "Hello SLAM\n"
    assert captured.err == ""


def test_main_prints_program_greeting_and_succeeds(capsys):
    status = main([])
    captured = capsys.readouterr()
    assert status == 0
    assert captured.out == "Hello SLAM!\n"


def test_main_without_arguments(capsys):
    assert main() == 0
    assert capsys.readouterr().out == "Hello SLAM!\n"