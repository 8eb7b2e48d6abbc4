import io

import pytest

import bodmas
from bodmas import (
    EOF_MARKER,
    FAILURE,
    MAX_LINE_SIZE,
    SUCCESS,
    Driver,
    LineSource,
    SourceError,
    bodmas_main,
)


def _run(text, color=False):
    out, err = io.StringIO(), io.StringIO()
    driver = Driver(LineSource(io.StringIO(text)), out=out, err=err, color=color)
    status = driver.run()
    return status, out.getvalue(), err.getvalue()


def test_line_source_skips_blank_lines_and_counts_them():
    source = LineSource(io.StringIO('\n   \n1+1\n\n2\n'))

    assert source.next_line() == '1+1\n'
    assert source.line_number == 3
    assert source.next_line() == '2\n'
    assert source.line_number == 5
    assert source.next_line() == EOF_MARKER
    assert source.eof


def test_line_source_terminates_last_line():
    source = LineSource(io.StringIO('7*6'))

    assert source.next_line() == '7*6\n'
    assert source.next_line() == EOF_MARKER


def test_line_source_rejects_too_long_lines():
    source = LineSource(io.StringIO('1' * (MAX_LINE_SIZE - 1) + '\n' + '1' * MAX_LINE_SIZE + '\n'))

    assert len(source.next_line()) == MAX_LINE_SIZE
    with pytest.raises(SourceError):
        source.next_line()


def test_line_source_prompts_before_every_read():
    prompt_out = io.StringIO()
    source = LineSource(io.StringIO('1\n\n'), prompt='> ', prompt_out=prompt_out)

    source.next_line()
    assert prompt_out.getvalue() == '> '
    source.next_line()
    assert prompt_out.getvalue() == '> > > '


def test_driver_prints_results_and_keeps_going_after_errors():
    status, out, err = _run('2 + 3 * 4\n(2 + 3) * 4\n5 / 0\n1 + 1\n')

    assert status == FAILURE
    assert out == '14\n20\n2\n'
    assert err == 'RuntimeError: <3:3>: DivisionByZero\n'


def test_driver_reports_lexer_errors_with_snippet():
    status, out, err = _run('3 & 4\n')

    assert status == FAILURE
    assert out == ''
    assert err == 'LexError: <1:3>: unexpected character `&`\n\t3 & 4\n\t~~^~~\n'


def test_driver_reports_syntax_errors():
    status, _, err = _run('(1 + 2\n')

    assert status == FAILURE
    assert err.startswith('SyntaxError: <1:7>:')


def test_driver_succeeds_when_every_line_does():
    status, out, err = _run('1\n\n  \n2*2')

    assert status == SUCCESS
    assert out == '1\n4\n'
    assert err == ''


def test_empty_input_prints_nothing():
    assert _run('') == (SUCCESS, '', '')


def test_driver_colors_results():
    _, out, _ = _run('6*7\n', color=True)

    assert out == '\033[1;32m42\033[0m\n'


@pytest.mark.parametrize('text, status', [
    ('2+2', SUCCESS),
    ('(2+2))', FAILURE),
    ('5+10+56\n4+32', SUCCESS),
    ('52 52+36', FAILURE),
    ('43++45', FAILURE),
    ('1+2-(3*4)/5', SUCCESS),
    ('8', SUCCESS),
    ('1+2=3', FAILURE),
    ('10/(45/9-5)', FAILURE),
])
def test_main_exit_status(tmp_path, text, status):
    path = tmp_path / 'input.txt'
    path.write_text(text)

    assert bodmas_main([str(path), '--no-color']) == status


def test_main_evaluates_file(tmp_path, capsys):
    path = tmp_path / 'input.txt'
    path.write_text('5+10+56\n\n4+32\n')

    assert bodmas_main([str(path)]) == SUCCESS
    assert capsys.readouterr().out == '71\n36\n'


def test_main_missing_file(tmp_path, capsys):
    assert bodmas_main([str(tmp_path / 'missing.txt')]) == FAILURE
    assert capsys.readouterr().err.startswith('open:')


def test_main_aborts_on_too_long_line(tmp_path, capsys):
    path = tmp_path / 'input.txt'
    path.write_text('1+1\n' + '2' * 2000 + '\n3\n')

    assert bodmas_main([str(path), '--no-color']) == FAILURE
    captured = capsys.readouterr()
    assert captured.out == '2\n'
    assert captured.err.startswith('InputError: <2:1025>:')


def test_main_logs_tokens(tmp_path, capsys, monkeypatch):
    monkeypatch.setattr(bodmas, '_SHOULD_LOG_TOKENS', False)
    path = tmp_path / 'input.txt'
    path.write_text('1+2\n')

    bodmas_main([str(path), '--tokens'])

    out = capsys.readouterr().out
    assert 'tokens of line 1:' in out
    assert 'Token(TokenType.PLUS' in out


def test_main_renders_ast(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    path = tmp_path / 'input.txt'
    path.write_text('(2+3)*4\n')

    assert bodmas_main([str(path), '--ast']) == SUCCESS
    assert (tmp_path / bodmas.AST_HTML).exists()


def test_ast_of_a_full_length_chain_is_rendered_and_run_goes_on(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    operands = MAX_LINE_SIZE // 2
    chain = '+'.join(['1'] * operands)
    out, err = io.StringIO(), io.StringIO()
    source = LineSource(io.StringIO(chain + '\n2\n'))

    status = Driver(source, out=out, err=err, show_ast=True).run()

    assert len(chain) == MAX_LINE_SIZE - 1
    assert status == SUCCESS
    assert out.getvalue() == f'{operands}\n2\n'
    assert err.getvalue() == ''
    assert (tmp_path / bodmas.AST_HTML).exists()
