"""
BODMAS calculator
- one integer expression per line, read from a file or the terminal
- precedence by grammar level, left-associative folding
- bounded evaluation stack (StackOverflow / StackUnderflow)
- error position and context snippet

grammar:
expression            : add_expr (END_OF_EXPRESSION | END_OF_FILE)
add_expr              : sub_expr (PLUS sub_expr)*
sub_expr              : mul_expr (MINUS mul_expr)*
mul_expr              : div_expr (TIMES div_expr)*
div_expr              : unit (DIVIDE unit)*
unit                  : NUMBER
                      | BRACKET_OPEN add_expr BRACKET_CLOSE
"""

from collections import namedtuple
from enum import Enum
import argparse
import sys

from pyecharts import options as opts
from pyecharts.charts import Tree

VERSION = '1.0'
BANNER = f'A BODMAS calculator.\nVersion {VERSION}.'

SUCCESS = 0
FAILURE = 1

MAX_LINE_SIZE   = 1024  # chars per line, terminator included
MAX_STACK_DEPTH = 32    # evaluation stack capacity
SNIPPET_RADIUS  = 5     # context chars around a lexer error
PROMPT          = '> '
EOF_MARKER      = '\0'  # what LineSource hands out at end of stream
NESTING_FRAMES  = 8 * MAX_LINE_SIZE  # extra recursion room for one full line

LOCAL_ECHARTS = True
ECHARTS_JS_HOST = './'
AST_HTML = 'Tree.html'

_SHOULD_LOG_TOKENS = False
_SHOULD_LOG_STACK = False

RED   = '\033[1;31m'
GREEN = '\033[1;32m'
RESET = '\033[0m'


def _paint(text, color, enabled=True):
    if not enabled:
        return text
    return f'{color}{text}{RESET}'


def _with_nesting_room(func):
    """call func with the recursion limit raised by NESTING_FRAMES

    A MAX_LINE_SIZE line nests up to MAX_LINE_SIZE // 2 brackets, and
    each level costs several frames in the parser and in pyecharts.
    """
    limit = sys.getrecursionlimit()
    sys.setrecursionlimit(limit + NESTING_FRAMES)
    try:
        return func()
    finally:
        sys.setrecursionlimit(limit)


###############################################################################
#                                                                             #
#   ERROR MESSAGE                                                             #
#                                                                             #
###############################################################################

Position = namedtuple('Position', ['line', 'col'])


class ErrorCode(Enum):
    DIVISION_BY_ZERO    = 'DivisionByZero'
    STACK_OVERFLOW      = 'StackOverflow'
    STACK_UNDERFLOW     = 'StackUnderflow'


class ErrorInfo:
    # lexer error

    @staticmethod
    def unexpected_char(item):
        return f'unexpected character `{item}`'

    # parser error

    @staticmethod
    def closing_expected(want, item):
        return f'expected closing `{want}` near `{item}`'

    @staticmethod
    def end_of_expression_expected(item):
        return f'expected end of expression near `{item}`'

    @staticmethod
    def operand_expected(item):
        return f"expected an integer or `(` near `{item}`"

    @staticmethod
    def nested_too_deep():
        return 'expression is nested too deeply'

    # input error

    @staticmethod
    def line_too_long(limit):
        return f'line is longer than {limit} characters'


class Error(Exception):
    kind = 'Error'

    def __init__(self, position, message):
        super().__init__(message)
        self.position = position
        self.message = message

    def __str__(self):
        if self.position is None:
            return f'{self.kind}: {self.message}'
        return f'{self.kind}: <{self.position.line}:{self.position.col}>: {self.message}'

    __repr__ = __str__

    def report(self, color=False):
        """text written to the error channel"""
        return _paint(str(self), RED, color)


class LexerError(Error):
    kind = 'LexError'

    def __init__(self, position, message, before='', char='', after=''):
        super().__init__(position, message)
        self.before = before
        self.char = char
        self.after = after

    def snippet(self, color=False):
        """context line with the offending char marked, and a marker line under it

            1 + 3 & 4 - 2
            ~~~~~~^~~~~~
        """
        text = self.before + _paint(self.char, RED, color) + self.after
        marks = '~' * len(self.before) + '^' + '~' * len(self.after)
        return f'\t{text}\n\t{marks}'

    def report(self, color=False):
        return f'{super().report(color)}\n{self.snippet(color)}'


class ParserError(Error):
    kind = 'SyntaxError'


class EvaluatorError(Error):
    kind = 'RuntimeError'

    def __init__(self, position, error_code):
        super().__init__(position, error_code.value)
        self.error_code = error_code


class SourceError(Error):
    kind = 'InputError'


###############################################################################
#                                                                             #
#  LEXER                                                                      #
#                                                                             #
###############################################################################

# Token types
class TokenType(Enum):
    # misc
    NUMBER              = 'NUMBER'
    END_OF_EXPRESSION   = '\\n'
    END_OF_FILE         = 'EOF'
    # opt
    PLUS                = '+'
    MINUS               = '-'
    TIMES               = '*'
    DIVIDE              = '/'
    BRACKET_OPEN        = '('
    BRACKET_CLOSE       = ')'


def _build_single_char_tokens():
    tk_list = list(TokenType)
    start_idx = tk_list.index(TokenType.PLUS)
    end_idx = tk_list.index(TokenType.BRACKET_CLOSE)
    return {
        token_type.value: token_type
        for token_type in tk_list[start_idx: end_idx + 1]
    }


SINGLE_CHAR_TOKENS = _build_single_char_tokens()


def _is_digit(char):
    # str.isdigit() also accepts superscripts and other scripts' digits
    return '0' <= char <= '9'


class Token:
    def __init__(self, token_type, value, position):
        """Token

        Args:
          token_type: TokenType
          value: str, the digits of a NUMBER token, None otherwise
          position: Position
        """
        self.type = token_type
        self.value = value
        self.position = position

    @property
    def lexeme(self):
        if self.type == TokenType.NUMBER:
            return self.value
        return self.type.value

    def __str__(self):
        return f'Token({self.type}, {repr(self.value)}, pos={self.position.line}:{self.position.col})'

    def __repr__(self):
        return self.__str__()


class Lexer:
    def __init__(self, text: str, line_number=1):
        self.text = text
        self.pos = 0
        self.current_char = self.text[self.pos] if self.text else None
        # for error information
        self.line = line_number

    def position(self):
        return Position(self.line, self.pos + 1)

    def log(self, msg):
        if _SHOULD_LOG_TOKENS:
            print(msg)

    def error(self):
        start = max(self.pos - SNIPPET_RADIUS, 0)
        after = self.text[self.pos + 1: self.pos + 1 + SNIPPET_RADIUS]
        after = after.split('\n', 1)[0].split(EOF_MARKER, 1)[0]
        raise LexerError(
            self.position(),
            ErrorInfo.unexpected_char(self.current_char),
            before=self.text[start: self.pos],
            char=self.current_char,
            after=after,
        )

    def advance(self):
        """advance the 'pos' pointer and set the 'current_char' variable.
        """
        self.pos += 1
        if self.pos > len(self.text) - 1:
            self.current_char = None  # end of input
        else:
            self.current_char = self.text[self.pos]

    def skip_whitespace(self):
        while self.current_char is not None and self.current_char != '\n' and self.current_char.isspace():
            self.advance()

    def number(self):
        """maximal run of digits, kept as written
        """
        token = Token(TokenType.NUMBER, None, self.position())

        result = ''
        while self.current_char is not None and _is_digit(self.current_char):
            result += self.current_char
            self.advance()

        token.value = result
        return token

    def get_next_token(self):
        """lexical analyzer, lexer, scanner, tokenizer

        breaking a line apart into tokens. One token one time.
        Returns None once the line is used up.
        """
        while self.current_char is not None:
            # newline ends the expression
            if self.current_char == '\n':
                token = Token(TokenType.END_OF_EXPRESSION, None, self.position())
                self.advance()
                return token

            # space
            if self.current_char.isspace():
                self.skip_whitespace()
                continue

            # end of stream, nothing is read past it
            if self.current_char == EOF_MARKER:
                token = Token(TokenType.END_OF_FILE, None, self.position())
                self.pos = len(self.text)
                self.current_char = None
                return token

            # digit -> number
            if _is_digit(self.current_char):
                return self.number()

            # + - * / ( )
            token_type = SINGLE_CHAR_TOKENS.get(self.current_char)
            if token_type is not None:
                token = Token(token_type, None, self.position())
                self.advance()
                return token

            self.error()

        return None

    def tokenize(self):
        tokens = []
        token = self.get_next_token()
        while token is not None:
            tokens.append(token)
            token = self.get_next_token()

        self.log(f'tokens of line {self.line}:')
        for token in tokens:
            self.log(f'    {token}')
        return tokens


###############################################################################
#                                                                             #
#  AST & PARSER                                                               #
#                                                                             #
###############################################################################

class AST:
    pass


class Num(AST):
    """integer literal
    """

    def __init__(self, token: Token):
        self.token = token
        self.value = int(token.value)


class BinOp(AST):
    """
    """

    def __init__(self, left, op: Token, right):
        self.left = left
        self.token = self.op = op
        self.right = right


class TokenStream:
    """tokens of one line, handed to the parser one at a time

    Past the last token the stream keeps answering END_OF_FILE.
    """

    def __init__(self, tokens, line_number=1):
        self.tokens = list(tokens)
        self.pos = 0
        self.line = line_number

    def end_position(self):
        if not self.tokens:
            return Position(self.line, 1)
        last = self.tokens[-1]
        # sentinels stand for a single char
        width = len(last.value) if last.type == TokenType.NUMBER else 1
        return Position(last.position.line, last.position.col + width)

    def get_next_token(self):
        if self.pos < len(self.tokens):
            token = self.tokens[self.pos]
            self.pos += 1
            return token
        return Token(TokenType.END_OF_FILE, None, self.end_position())


class Parser:
    def __init__(self, tokens, line_number=1):
        """
        Args:
          tokens: TokenStream, or a list of Token
          line_number: line the tokens came from, used when the list is empty
        """
        if not isinstance(tokens, TokenStream):
            tokens = TokenStream(tokens, line_number)
        self.stream = tokens
        self.current_token = self.get_next_token()

    def get_next_token(self):
        return self.stream.get_next_token()

    def error(self, token, message):
        raise ParserError(token.position, message)

    def eat(self, token_type):
        """verify the token type
        """
        if self.current_token.type == token_type:
            self.current_token = self.get_next_token()
        else:
            # only the closing bracket is eaten without a look first
            self.error(self.current_token, ErrorInfo.closing_expected(token_type.value, self.current_token.lexeme))

    def expression(self):
        """parse expression

        expression : add_expr (END_OF_EXPRESSION | END_OF_FILE)
        """
        node = self.add_expr()
        if self.current_token.type not in (TokenType.END_OF_EXPRESSION, TokenType.END_OF_FILE):
            self.error(self.current_token, ErrorInfo.end_of_expression_expected(self.current_token.lexeme))
        return node

    def add_expr(self):
        """parse add_expr

        add_expr : sub_expr (PLUS sub_expr)*
        """
        node = self.sub_expr()

        while self.current_token.type == TokenType.PLUS:
            op = self.current_token
            self.eat(TokenType.PLUS)
            node = BinOp(left=node, op=op, right=self.sub_expr())

        return node

    def sub_expr(self):
        """parse sub_expr

        sub_expr : mul_expr (MINUS mul_expr)*
        """
        node = self.mul_expr()

        while self.current_token.type == TokenType.MINUS:
            op = self.current_token
            self.eat(TokenType.MINUS)
            node = BinOp(left=node, op=op, right=self.mul_expr())

        return node

    def mul_expr(self):
        """parse mul_expr

        mul_expr : div_expr (TIMES div_expr)*
        """
        node = self.div_expr()

        while self.current_token.type == TokenType.TIMES:
            op = self.current_token
            self.eat(TokenType.TIMES)
            node = BinOp(left=node, op=op, right=self.div_expr())

        return node

    def div_expr(self):
        """parse div_expr

        div_expr : unit (DIVIDE unit)*
        """
        node = self.unit()

        while self.current_token.type == TokenType.DIVIDE:
            op = self.current_token
            self.eat(TokenType.DIVIDE)
            node = BinOp(left=node, op=op, right=self.unit())

        return node

    def unit(self):
        """parse unit

        unit : NUMBER
             | BRACKET_OPEN add_expr BRACKET_CLOSE
        """
        token = self.current_token
        if token.type == TokenType.NUMBER:
            self.eat(TokenType.NUMBER)
            return Num(token)
        elif token.type == TokenType.BRACKET_OPEN:
            self.eat(TokenType.BRACKET_OPEN)
            node = self.add_expr()
            self.eat(TokenType.BRACKET_CLOSE)
            return node
        else:
            self.error(token, ErrorInfo.operand_expected(token.lexeme))

    def parse(self):
        """AST of the line, or None when the stream starts at END_OF_FILE
        """
        if self.current_token.type == TokenType.END_OF_FILE:
            return None
        try:
            return _with_nesting_room(self.expression)
        except RecursionError:
            # only reachable for text longer than MAX_LINE_SIZE
            self.error(self.current_token, ErrorInfo.nested_too_deep())


###############################################################################
#                                                                             #
#  NODE VISITOR                                                               #
#                                                                             #
###############################################################################

class NodeVistor:
    def visit(self, node):
        """dispatches
        """
        method_name = 'visit_' + type(node).__name__
        visitor = getattr(self, method_name, self.generic_visitor)
        return visitor(node)

    def generic_visitor(self, node):
        raise Exception(f'No visit_{type(node).__name__} method')

    def walk(self, tree):
        """post-order: left subtree, right subtree, then the node itself

        Done with an explicit list so long operator chains do not run
        into the interpreter's recursion limit.
        """
        pending = [(tree, False)]
        while pending:
            node, children_done = pending.pop()
            if isinstance(node, BinOp) and not children_done:
                pending.append((node, True))
                pending.append((node.right, False))
                pending.append((node.left, False))
            else:
                self.visit(node)


###############################################################################
#                                                                             #
#  DISPLAYER                                                                  #
#                                                                             #
###############################################################################

class Displayer(NodeVistor):
    def __init__(self, tree) -> None:
        self.tree = tree
        self.packed = []

    def visit_BinOp(self, node: BinOp):
        right = self.packed.pop()
        left = self.packed.pop()
        data = {
            'name': f'{node.op.lexeme}',
            'children': [left, right]
        }
        self.packed.append(data)

    def visit_Num(self, node: Num):
        data = {
            'name': f'{str(node.value)}'
        }
        self.packed.append(data)

    def pack(self):
        """chart data of the tree: {'name': ..., 'children': [...]}
        """
        self.packed = []
        self.walk(self.tree)
        return self.packed.pop()

    def chart(self, title='Tree'):
        data = self.pack()
        return (
            Tree(init_opts=opts.InitOpts(
                page_title=title,
                js_host=ECHARTS_JS_HOST if LOCAL_ECHARTS else '',
            ))
            .add(
                series_name="",  # name
                data=[data],  # data
                initial_tree_depth=-1,  # all expand
                orient="TB",  # top-to-bottom
                label_opts=opts.LabelOpts(
                    position="top",
                    vertical_align="middle",
                ),
            )
            .set_global_opts(title_opts=opts.TitleOpts(title=title))
        )

    def display(self, path=AST_HTML):
        # pyecharts cleans and dumps the nested data recursively
        _with_nesting_room(lambda: self.chart().render(path))
        return path


###############################################################################
#                                                                             #
#  EVALUATOR                                                                  #
#                                                                             #
###############################################################################

class EvaluationStack:
    """fixed-capacity operand stack, one per evaluation
    """

    def __init__(self, capacity=MAX_STACK_DEPTH) -> None:
        self.capacity = capacity
        self._items = []

    def push(self, value):
        if self.is_full():
            raise IndexError('push onto a full stack')
        self._items.append(value)

    def pop(self):
        return self._items.pop()

    def is_full(self):
        return len(self._items) >= self.capacity

    def is_empty(self):
        return not self._items

    def clear(self):
        self._items.clear()

    def __len__(self):
        return len(self._items)

    def __str__(self) -> str:
        s = '\n'.join(f'    {value}' for value in reversed(self._items))
        return f'EVALUATION STACK ({len(self._items)}/{self.capacity})\n{s}'


def _truncating_div(left, right):
    # `//` floors, the result has to be truncated toward zero
    quotient = abs(left) // abs(right)
    if (left < 0) != (right < 0):
        return -quotient
    return quotient


class Evaluator(NodeVistor):
    def __init__(self, tree) -> None:
        self.tree = tree
        self.stack = EvaluationStack()

    def error(self, token, error_code):
        position = token.position if token is not None else None
        raise EvaluatorError(position, error_code)

    def log(self, msg):
        if _SHOULD_LOG_STACK:
            print(msg)

    def visit_Num(self, node: Num):
        if self.stack.is_full():
            # expression is too nested
            self.error(node.token, ErrorCode.STACK_OVERFLOW)
        self.stack.push(node.value)
        self.log(f'push: {node.value}')

    def visit_BinOp(self, node: BinOp):
        # both operands are already on the stack, see walk()
        if len(self.stack) < 2:
            self.error(node.op, ErrorCode.STACK_UNDERFLOW)
        right = self.stack.pop()
        left = self.stack.pop()

        if node.op.type == TokenType.PLUS:
            result = left + right
        elif node.op.type == TokenType.MINUS:
            result = left - right
        elif node.op.type == TokenType.TIMES:
            result = left * right
        elif node.op.type == TokenType.DIVIDE:
            if right == 0:
                self.error(node.op, ErrorCode.DIVISION_BY_ZERO)
            result = _truncating_div(left, right)
        else:
            raise Exception(f'No operation for {node.op.type}')

        self.stack.push(result)
        self.log(f'{left} {node.op.lexeme} {right} = {result}')

    def evaluate(self):
        if self.tree is None:
            return None
        try:
            self.walk(self.tree)
            if self.stack.is_empty():
                # a well-formed tree always leaves its result here
                self.error(None, ErrorCode.STACK_UNDERFLOW)
            self.log(self.stack)
            return self.stack.pop()
        finally:
            self.stack.clear()


###############################################################################
#                                                                             #
#   PIPELINE                                                                  #
#                                                                             #
###############################################################################

def tokenize(line, line_number=1):
    return Lexer(line, line_number).tokenize()


def parse(tokens, line_number=1):
    return Parser(tokens, line_number).parse()


def evaluate(tree):
    return Evaluator(tree).evaluate()


def calculate(text, line_number=1):
    """value of one expression line, None if it holds no expression
    """
    return evaluate(parse(tokenize(text, line_number), line_number))


###############################################################################
#                                                                             #
#   LINE SOURCE & DRIVER                                                      #
#                                                                             #
###############################################################################

class LineSource:
    def __init__(self, stream, prompt=None, prompt_out=None) -> None:
        """
        Args:
          stream: text stream to read lines from
          prompt: str shown before every read, None for no prompt
          prompt_out: where the prompt goes, stdout by default
        """
        self.stream = stream
        self.prompt = prompt
        self.prompt_out = prompt_out
        self.line_number = 0
        self.eof = False

    def show_prompt(self):
        if self.prompt:
            out = self.prompt_out or sys.stdout
            out.write(self.prompt)
            out.flush()

    def next_line(self):
        """next line holding something besides whitespace, always ending
        with a newline; EOF_MARKER once the stream is used up
        """
        while True:
            self.show_prompt()
            line = self.stream.readline()
            if not line:
                self.eof = True
                return EOF_MARKER

            self.line_number += 1
            if not line.endswith('\n'):
                line += '\n'
            if len(line) > MAX_LINE_SIZE:
                raise SourceError(
                    Position(self.line_number, MAX_LINE_SIZE + 1),
                    ErrorInfo.line_too_long(MAX_LINE_SIZE),
                )
            if line.isspace():
                # ignore blank and empty lines
                continue
            return line


class Driver:
    def __init__(self, source: LineSource, out=None, err=None, color=False, show_ast=False) -> None:
        self.source = source
        self.out = out
        self.err = err
        self.color = color
        self.show_ast = show_ast
        self.status = SUCCESS

    def report(self, error):
        print(error.report(self.color), file=self.err or sys.stderr)

    def process_line(self, line):
        """run one line through the pipeline; False if it failed
        """
        try:
            tokens = tokenize(line, self.source.line_number)
            tree = parse(tokens, self.source.line_number)
            if self.show_ast and tree is not None:
                Displayer(tree).display()
            result = evaluate(tree)
        except (LexerError, ParserError, EvaluatorError) as e:
            self.report(e)
            return False

        if result is not None:
            print(_paint(str(result), GREEN, self.color), file=self.out or sys.stdout)
        return True

    def run(self):
        """process lines until end of stream

        SourceError and OSError from the source are not caught here,
        they end the whole run.
        """
        while not self.source.eof:
            line = self.source.next_line()
            if not self.process_line(line):
                self.status = FAILURE
        return self.status


###############################################################################
#                                                                             #
#   MAIN                                                                      #
#                                                                             #
###############################################################################

def bodmas_main(argv=None):
    global _SHOULD_LOG_TOKENS
    global _SHOULD_LOG_STACK

    parser = argparse.ArgumentParser(description='BODMAS - integer expression calculator')
    parser.add_argument('inputfile', nargs='?', help='file of expressions, one per line (default: stdin)')
    parser.add_argument('--tokens', action='store_true', help='Print tokens of every line')
    parser.add_argument('--stack', action='store_true', help='Print evaluation stack information')
    parser.add_argument('--ast', action='store_true', help=f'Render every AST into {AST_HTML}')
    parser.add_argument('--no-color', action='store_true', help='Do not color results and errors')
    args = parser.parse_args(argv)

    _SHOULD_LOG_TOKENS = args.tokens
    _SHOULD_LOG_STACK = args.stack

    if args.inputfile:
        try:
            stream = open(args.inputfile, 'r')
        except OSError as e:
            print(f'open: {e}', file=sys.stderr)
            return FAILURE
    else:
        stream = sys.stdin

    interactive = stream.isatty()
    color = sys.stdout.isatty() and not args.no_color
    if interactive:
        print(BANNER)

    source = LineSource(stream, prompt=PROMPT if interactive else None)
    driver = Driver(source, color=color, show_ast=args.ast)
    try:
        status = driver.run()
    except SourceError as e:
        driver.report(e)
        status = FAILURE
    except OSError as e:
        print(f'read: {e}', file=sys.stderr)
        status = FAILURE
    except KeyboardInterrupt:
        status = driver.status
    finally:
        if stream is not sys.stdin:
            stream.close()

    if interactive:
        print('')
    return status


if __name__ == '__main__':
    sys.exit(bodmas_main())
