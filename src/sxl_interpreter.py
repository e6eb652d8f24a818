'''
the goal is to implement a tiny s-expression scripting language, called sxl
it's deliberately small: integers, strings, booleans, symbols, lists and closures

the input of the language is a string, which is implicitly wrapped as (do ...)
then Tokenizer turns the string into a list of tokens
Reader consumes tokens from front to back and builds one value tree, the root is always a list
finally the evaluator walks the tree against a chained environment

the parsed tree is made of the same value classes the evaluator returns
integer, text and boolean are self-evaluating, symbol is looked up, list is a call

the evaluator itself knows no keyword
special forms like def, fn, if are handled by a keyword table, which is injected into make_evaluator
the default table lives in sxl_keywords, the bundled standard library in sxl_stdlib
a completely different table works as well, see the tests at the bottom

like stringify and equality, evaluation is dispatched on value type through rule dicts
rules are installed by install_rules(), so extension modules can update them later
'''

import re
import sys
import inspect
from typing import Any, Callable, Collection, Dict, List, Optional, Sequence, Set, Tuple, Type, TypeVar, Union


'''dynamic dispatching by type'''


def find_type(cur_type: Type[object], type_dict: Dict[Type, Any]):
    '''searching cur_type in the type hierarchy, until finding a base class in type_dict'''
    while cur_type != object:
        if cur_type in type_dict:
            return cur_type
        else:
            cur_type = cur_type.__base__
    return cur_type


'''
global config

with suppress_panic being True
error will not exit process directly
instead error is turned into panic, handled by test_one or by the embedding host

with suppress_print being True
print will not go to console directly
instead it is buffered, and later explicitly dumped as string

both make test easier, sxl_main turns both off
'''

sxl_config = {
    'suppress_panic': True,
    'suppress_print': True
}


class SxlPanic(Exception):
    '''error is the original SxlError, None for errors outside the interpreter's taxonomy'''

    def __init__(self, message: str, error: Optional["SxlError"] = None):
        self.message = message
        self.error = error

    def __str__(self) -> str:
        return self.message


def sxl_panic(message: str, error: Optional["SxlError"] = None):
    if sxl_config['suppress_panic']:
        raise SxlPanic(message, error)
    else:
        print(message, file=sys.stderr)
        exit(1)


_sxl_buf: List[str] = []


def sxl_print(message: str):
    if sxl_config['suppress_print']:
        _sxl_buf.append(message)
    else:
        print(message, end='')


def sxl_flush():
    res = ''.join(_sxl_buf)
    _sxl_buf.clear()
    return res


'''
error taxonomy

every error is fatal, nothing inside tokenizer, reader or evaluator catches them
only parse_source and the top level evaluate turn them into panic
'''


class SxlError(Exception):
    def __init__(self, message: str):
        self.message = message

    def __str__(self) -> str:
        return self.message


class Token:
    '''a raw fragment of source text, line is 0-based and only used in error messages'''

    def __init__(self, lexeme: str, line: int):
        self.lexeme = lexeme
        self.line = line


class SxlLexicalError(SxlError):
    def __init__(self, token: Token, message: str):
        super().__init__(message)
        self.token = token

    def __str__(self) -> str:
        return 'lexical error at %s in line %d: %s' % (self.token.lexeme, self.token.line+1, self.message)


class SxlSyntaxError(SxlError):
    def __init__(self, message: str, token: Optional[Token] = None):
        super().__init__(message)
        self.token = token

    def __str__(self) -> str:
        if self.token is None:
            return 'syntax error: %s' % self.message
        return 'syntax error at %s in line %d: %s' % (self.token.lexeme, self.token.line+1, self.message)


class SxlNameError(SxlError):
    def __init__(self, name: str, message: str):
        super().__init__(message)
        self.name = name

    def __str__(self) -> str:
        return 'name error: %s: %s' % (self.message, self.name)


class SxlTypeError(SxlError):
    def __str__(self) -> str:
        return 'type error: %s' % self.message


class SxlArityError(SxlError):
    def __init__(self, name: str, message: str):
        super().__init__(message)
        self.name = name

    def __str__(self) -> str:
        return 'arity error: %s' % self.message


'''
tokenizer: string -> tokens
rules are applied in this order, each on the whole text:
first ; starts a comment until end of line, the comment is replaced by a space
then each paren is padded with spaces
finally a left-to-right scan splits on whitespace and comma, knowing whether it is inside a double quoted string
inside string: whitespace and comma are ordinary, backslash protects the next character, line break becomes a space
comments and parens are not quote-aware, so "a;b" loses its tail and "(c)" reads as " ( c ) "
an unterminated string just runs to the end, the reader will complain about it
ref: https://craftinginterpreters.com/scanning.html
'''


_comment_pattern = re.compile(r';[^\n]*')
_paren_pattern = re.compile(r'([()])')


class Tokenizer:
    # instance vars
    _source: str
    _start: int
    _current: int
    _line: int
    _tokens: List[Token]

    def __init__(self):
        self._restart('')

    def tokenize(self, source: str):
        source = _comment_pattern.sub(' ', source)
        source = _paren_pattern.sub(r' \1 ', source)
        self._restart(source)
        while not self._is_at_end():
            self._start = self._current
            self._scan_one_token()
        return self._tokens

    def _restart(self, source: str):
        self._source = source
        self._start = 0
        self._current = 0
        self._line = 0
        self._tokens = []

    def _scan_one_token(self):
        c = self._advance()
        if c == '\n':
            self._line += 1
        elif not Tokenizer._is_separator(c):
            self._scan_fragment(c == '"')

    def _is_at_end(self):
        return self._current >= len(self._source)

    def _advance(self):
        c = self._source[self._current]
        self._current += 1
        return c

    def _peek(self):
        return self._source[self._current]

    def _add_token(self, line: int):
        lexeme = self._source[self._start:self._current]
        lexeme = lexeme.replace('\r\n', ' ').replace('\n', ' ').rstrip()
        self._tokens.append(Token(lexeme, line))

    def _scan_fragment(self, in_string: bool):
        line = self._line
        while not self._is_at_end():
            c = self._peek()
            if in_string:
                self._advance()
                if c == '\\' and not self._is_at_end():
                    c = self._advance()
                elif c == '"':
                    in_string = False
                if c == '\n':
                    self._line += 1
            elif c == '"':
                self._advance()
                in_string = True
            elif Tokenizer._is_separator(c):
                break
            else:
                self._advance()
        self._add_token(line)

    @staticmethod
    def _is_separator(c: str):
        return c.isspace() or c == ','


_tokenizer = Tokenizer()


def tokenize_source(source: str):
    return _tokenizer.tokenize(source)


'''
values

the reader produces values directly, there is no separate expression tree
a list is both a call in code and a plain value once constructed
procedure and undef only appear as evaluation results, never in parsed code
'''


class SxlVal:
    pass


GenericVal = TypeVar('GenericVal', bound=SxlVal)


class IntegerVal(SxlVal):
    def __init__(self, value: int):
        self.value = value


class TextVal(SxlVal):
    def __init__(self, value: str):
        self.value = value


class BooleanVal(SxlVal):
    def __init__(self, value: bool):
        self.value = value


class SymbolVal(SxlVal):
    '''two symbols are equal iff their names are equal'''

    def __init__(self, name: str):
        self.name = name

    def __eq__(self, other: object) -> bool:
        return isinstance(other, SymbolVal) and self.name == other.name

    def __hash__(self) -> int:
        return hash(self.name)


class ListVal(SxlVal):
    def __init__(self, contents: Sequence[SxlVal]):
        self.contents: Tuple[SxlVal, ...] = tuple(contents)


class UndefVal(SxlVal):
    pass


class Environment:
    '''
    bindings plus an optional enclosing environment
    lookup walks outward, definition only ever writes into bindings of this very environment
    a procedure keeps its defining environment alive for as long as the procedure itself lives

    should not pass {} as default value of bindings, because this {} will be shared among different instances
    see: https://stackoverflow.com/questions/26320899/why-is-the-empty-dictionary-a-dangerous-default-value-in-python
    '''

    def __init__(self, bindings: Dict[str, SxlVal], enclosing: Optional["Environment"] = None):
        self.bindings = bindings
        self.enclosing = enclosing


class ProcVal(SxlVal):
    def __init__(self, name: str, parameters: Sequence[str], body: SxlVal, env: Environment):
        self.name = name
        self.parameters: Tuple[str, ...] = tuple(parameters)
        self.body = body
        self.env = env


'''
reader: tokens -> one value tree
a very simple recursive descent, tokens are consumed through an explicit position
ref: https://craftinginterpreters.com/parsing-expressions.html

value -> INTEGER | TEXT | BOOLEAN | SYMBOL | list;
list -> LEFT_PAREN ( value )* RIGHT_PAREN;
'''

_integer_pattern = re.compile(r'-?[0-9]+')
_symbol_pattern = re.compile(r'[A-Za-z0-9_+-]+')

_escapes = {
    '\\': '\\',
    '"': '"',
    '\'': '\'',
    'n': '\n',
    't': '\t'
}

_hex_digits = set('0123456789abcdefABCDEF')


def find_string_end(lexeme: str):
    '''index of the unescaped double quote closing the string opened at lexeme[0], -1 if none'''
    i = 1
    while i < len(lexeme):
        c = lexeme[i]
        if c == '\\':
            i += 2
        elif c == '"':
            return i
        else:
            i += 1
    return -1


def decode_escapes(token: Token, content: str):
    parts: List[str] = []
    i = 0
    while i < len(content):
        c = content[i]
        if c != '\\':
            parts.append(c)
            i += 1
        elif content[i+1:i+2] == 'x':
            digits = content[i+2:i+4]
            if len(digits) != 2 or not all([d in _hex_digits for d in digits]):
                raise SxlLexicalError(token, 'invalid escape sequence \'\\x%s\'' % digits)
            parts.append(chr(int(digits, 16)))
            i += 4
        else:
            c2 = content[i+1:i+2]
            if c2 not in _escapes:
                raise SxlLexicalError(token, 'invalid escape sequence \'\\%s\'' % c2)
            parts.append(_escapes[c2])
            i += 2
    return ''.join(parts)


class Reader:
    '''
    keywords are the reserved spellings from the keyword table
    they are read as symbols even when they fall outside the identifier characters, e.g. * / < >
    '''

    _tokens: List[Token]
    _current: int
    _keywords: Set[str]

    def __init__(self, tokens: List[Token], keywords: Collection[str]):
        self._tokens = tokens
        self._current = 0
        self._keywords = set(keywords)

    def read(self) -> SxlVal:
        if self.is_at_end():
            raise SxlSyntaxError('EOF while reading', self.previous())
        token = self._advance()
        if token.lexeme == '(':
            return self._read_list(token)
        elif token.lexeme == ')':
            raise SxlSyntaxError('unmatched right parenthesis', token)
        else:
            return self._read_atom(token)

    def is_at_end(self):
        return self._current >= len(self._tokens)

    def _advance(self):
        token = self._tokens[self._current]
        self._current += 1
        return token

    def _peek(self):
        return self._tokens[self._current]

    def previous(self) -> Optional[Token]:
        return self._tokens[self._current-1] if self._current > 0 else None

    def _read_list(self, token: Token):
        contents: List[SxlVal] = []
        while True:
            if self.is_at_end():
                raise SxlSyntaxError('EOF while reading', token)
            if self._peek().lexeme == ')':
                break
            contents.append(self.read())
        self._advance()  # consume right parenthesis
        return ListVal(contents)

    def _read_atom(self, token: Token) -> SxlVal:
        lexeme = token.lexeme
        if _integer_pattern.fullmatch(lexeme):
            return IntegerVal(int(lexeme))
        elif lexeme[0] == '"':
            return self._read_text(token)
        elif lexeme == 'true':
            return BooleanVal(True)
        elif lexeme == 'false':
            return BooleanVal(False)
        elif _symbol_pattern.fullmatch(lexeme) or lexeme in self._keywords:
            return SymbolVal(lexeme)
        else:
            raise SxlLexicalError(token, 'invalid token')

    def _read_text(self, token: Token):
        lexeme = token.lexeme
        end = find_string_end(lexeme)
        if end == -1:
            raise SxlLexicalError(token, 'unterminated string')
        elif end != len(lexeme)-1:
            raise SxlLexicalError(token, 'invalid token')
        return TextVal(decode_escapes(token, lexeme[1:-1]))


def parse_source(source: str, keywords: Collection[str], group: str = 'do'):
    '''
    wrap the whole source as (group ...), so zero or many top level forms read as one list
    the newline protects the closing paren from a trailing comment
    '''
    try:
        tokens = tokenize_source('(%s %s\n)' % (group, source))
        reader = Reader(tokens, keywords)
        root = reader.read()
        if not reader.is_at_end():
            # a stray right paren closed the wrapping list early
            raise SxlSyntaxError('unmatched right parenthesis', reader.previous())
    except SxlError as err:
        sxl_panic(str(err), err)
    return root


'''value stringifier'''

StringifyValueFuncType = Callable[[SxlVal], str]

_stringify_value_rules: Dict[Type, StringifyValueFuncType] = {}


def update_stringify_value_rules(rules: Dict[Type, StringifyValueFuncType]):
    _stringify_value_rules.update(rules)


def stringify_value(sv: SxlVal):
    t = find_type(type(sv), _stringify_value_rules)
    f = _stringify_value_rules[t]
    return f(sv)


StringifyValueRuleType = Union[
    Callable[[], str],
    Callable[[GenericVal], str],
]


def stringify_value_rule_decorator(rule_func: StringifyValueRuleType):
    arity = len(inspect.getfullargspec(rule_func).args)

    def _stringify_value_rule_wrapped(sv: SxlVal):
        args: List[Any] = [sv]
        return rule_func(*args[0:arity])
    return _stringify_value_rule_wrapped


@stringify_value_rule_decorator
def stringify_value_integer(sv: IntegerVal):
    return '%d' % sv.value


@stringify_value_rule_decorator
def stringify_value_text(sv: TextVal):
    return sv.value


@stringify_value_rule_decorator
def stringify_value_boolean(sv: BooleanVal):
    return 'true' if sv.value else 'false'


@stringify_value_rule_decorator
def stringify_value_symbol(sv: SymbolVal):
    return sv.name


@stringify_value_rule_decorator
def stringify_value_list(sv: ListVal):
    return '(%s)' % (' '.join([stringify_value(subval) for subval in sv.contents]))


@stringify_value_rule_decorator
def stringify_value_undef():
    return '#<undef>'


@stringify_value_rule_decorator
def stringify_value_procedure(sv: ProcVal):
    return '[procedure %s]' % sv.name


def install_stringify_value_rules():
    rules = {
        IntegerVal: stringify_value_integer,
        TextVal: stringify_value_text,
        BooleanVal: stringify_value_boolean,
        SymbolVal: stringify_value_symbol,
        ListVal: stringify_value_list,
        UndefVal: stringify_value_undef,
        ProcVal: stringify_value_procedure,
    }
    update_stringify_value_rules(rules)


_unescapes = {
    '\\': '\\\\',
    '"': '\\"',
    '\n': '\\n',
    '\t': '\\t'
}


def encode_escapes(value: str):
    parts: List[str] = []
    for c in value:
        if c in _unescapes:
            parts.append(_unescapes[c])
        elif ord(c) < 0x20:
            parts.append('\\x%02x' % ord(c))
        else:
            parts.append(c)
    return ''.join(parts)


def stringify_expr(sv: SxlVal) -> str:
    '''like stringify_value, but text is quoted and escaped, so the result reads back as code'''
    if isinstance(sv, TextVal):
        return '"%s"' % encode_escapes(sv.value)
    elif isinstance(sv, ListVal):
        return '(%s)' % (' '.join([stringify_expr(subval) for subval in sv.contents]))
    else:
        return stringify_value(sv)


'''value equality checker'''

EqualityFuncType = Callable[[SxlVal, SxlVal], bool]

_is_equal_rules: Dict[Type, EqualityFuncType] = {}


def update_is_equal_rules(rules: Dict[Type, EqualityFuncType]):
    _is_equal_rules.update(rules)


def is_equal(x: SxlVal, y: SxlVal):
    if type(x) == type(y):
        t = find_type(type(x), _is_equal_rules)
        f = _is_equal_rules[t]
        return f(x, y)
    else:
        return False


IsEqualRuleType = Union[
    Callable[[], bool],
    Callable[[GenericVal, GenericVal], bool],
]


def is_equal_rule_decorator(rule_func: IsEqualRuleType):
    arity = len(inspect.getfullargspec(rule_func).args)

    def _is_equal_rule_wrapped(x: SxlVal, y: SxlVal):
        args: List[Any] = [x, y]
        return rule_func(*args[0:arity])
    return _is_equal_rule_wrapped


@is_equal_rule_decorator
def is_equal_literal(x: Union[IntegerVal, TextVal, BooleanVal], y: Union[IntegerVal, TextVal, BooleanVal]):
    return x.value == y.value


@is_equal_rule_decorator
def is_equal_symbol(x: SymbolVal, y: SymbolVal):
    return x == y


@is_equal_rule_decorator
def is_equal_list(x: ListVal, y: ListVal):
    return len(x.contents) == len(y.contents) and all([is_equal(subx, suby) for (subx, suby) in zip(x.contents, y.contents)])


@is_equal_rule_decorator
def is_equal_true():
    return True


@is_equal_rule_decorator
def is_equal_object(x: ProcVal, y: ProcVal):
    return x is y


def install_is_equal_rules():
    rules = {
        IntegerVal: is_equal_literal,
        TextVal: is_equal_literal,
        BooleanVal: is_equal_literal,
        SymbolVal: is_equal_symbol,
        ListVal: is_equal_list,
        UndefVal: is_equal_true,
        ProcVal: is_equal_object,
    }
    update_is_equal_rules(rules)


def is_truthy(sv: SxlVal):
    '''the only thing not truthy is false, everything else is truthy, including 0, "" and ()'''
    return not isinstance(sv, BooleanVal) or sv.value


'''
environment operations

we use functional programming style, i.e. moving all methods out of class
in this way, new operations can be easily added
'''


class SxlEnvError(Exception):
    def __init__(self, name: str):
        self.name = name


def _env_find(env: Environment, name: str):
    cur: Optional[Environment] = env
    while cur is not None:
        if name in cur.bindings:
            return cur
        cur = cur.enclosing
    return None


def env_define(env: Environment, name: str, sv: SxlVal):
    env.bindings[name] = sv


def env_lookup(env: Environment, name: str):
    found = _env_find(env, name)
    if found is None:
        raise SxlEnvError(name)
    else:
        return found.bindings[name]


def env_extend(env: Environment, parameters: Sequence[str], arguments: Sequence[SxlVal]):
    return Environment(dict(zip(parameters, arguments)), env)


'''
evaluator

the keyword table maps a reserved name to a handler (evaluate, env, args) -> value
args are the raw unevaluated rest of the list, the handler decides what and when to evaluate
'''

EvalRecurFuncType = Callable[[SxlVal, Environment], SxlVal]
KeywordFuncType = Callable[[EvalRecurFuncType, Environment, Sequence[SxlVal]], SxlVal]
KeywordTableType = Dict[str, KeywordFuncType]
EvalFuncType = Callable[[SxlVal, Environment, EvalRecurFuncType, KeywordTableType], SxlVal]

_eval_rules: Dict[Type, EvalFuncType] = {}


def update_eval_rules(rules: Dict[Type, EvalFuncType]):
    _eval_rules.update(rules)


def make_evaluator(keywords: KeywordTableType):
    '''
    the returned evaluate is the top level entry, any interpreter error becomes a panic there
    handlers get evaluate_recursive instead, so errors keep propagating as exceptions
    '''
    def evaluate_recursive(node: SxlVal, env: Environment) -> SxlVal:
        t = find_type(type(node), _eval_rules)
        f = _eval_rules[t]
        return f(node, env, evaluate_recursive, keywords)

    def evaluate(node: SxlVal, env: Environment) -> SxlVal:
        try:
            return evaluate_recursive(node, env)
        except SxlError as err:
            sxl_panic(str(err), err)
        except RecursionError:
            sxl_panic('runtime error: maximum recursion depth exceeded')
        return UndefVal()
    return evaluate


'''
evaluator rule definitions
'''

EvalRuleType = Union[
    Callable[[], SxlVal],
    Callable[[GenericVal], SxlVal],
    Callable[[GenericVal, Environment], SxlVal],
    Callable[[GenericVal, Environment, EvalRecurFuncType], SxlVal],
    Callable[[GenericVal, Environment, EvalRecurFuncType, KeywordTableType], SxlVal],
]


def eval_rule_decorator(rule_func: EvalRuleType):
    arity = len(inspect.getfullargspec(rule_func).args)

    def _eval_rule_wrapped(node: SxlVal, env: Environment, evl: EvalRecurFuncType, keywords: KeywordTableType):
        args: List[Any] = [node, env, evl, keywords]
        return rule_func(*args[0:arity])
    return _eval_rule_wrapped


def pure_eval_symbol(node: SymbolVal, env: Environment, message: str = 'symbol undefined'):
    try:
        return env_lookup(env, node.name)
    except SxlEnvError:
        raise SxlNameError(node.name, message)


@eval_rule_decorator
def eval_symbol(node: SymbolVal, env: Environment):
    return pure_eval_symbol(node, env)


@eval_rule_decorator
def eval_literal(node: SxlVal):
    '''integer, text, boolean evaluate to themselves'''
    return node


def pure_check_arity(name: str, operator: ProcVal, arg_count: int):
    para_count = len(operator.parameters)
    if arg_count != para_count:
        raise SxlArityError(name, '%s expect exactly %d arguments, but get %d' % (name, para_count, arg_count))


def invoke(name: str, operator: ProcVal, arg_exprs: Sequence[SxlVal], env: Environment, evl: EvalRecurFuncType):
    '''
    arity is checked before any argument is evaluated
    arguments are evaluated left to right in the caller's environment
    but the new environment extends the procedure's own environment, this is what makes scoping lexical
    '''
    pure_check_arity(name, operator, len(arg_exprs))
    arguments = [evl(subexpr, env) for subexpr in arg_exprs]
    new_env = env_extend(operator.env, operator.parameters, arguments)
    return evl(operator.body, new_env)


@eval_rule_decorator
def eval_list(node: ListVal, env: Environment, evl: EvalRecurFuncType, keywords: KeywordTableType):
    if len(node.contents) == 0:
        raise SxlTypeError('cannot evaluate empty list')
    head = node.contents[0]
    args = node.contents[1:]
    if isinstance(head, SymbolVal):
        if head.name in keywords:
            return keywords[head.name](evl, env, args)
        operator = pure_eval_symbol(head, env, 'procedure not found for symbol')
        if not isinstance(operator, ProcVal):
            raise SxlTypeError('symbol %s is not a procedure' % head.name)
        return invoke(head.name, operator, args, env, evl)
    elif isinstance(head, ListVal):
        operator = evl(head, env)
        if not isinstance(operator, ProcVal):
            raise SxlTypeError('cannot call %s value' % type(operator).__name__)
        return invoke(operator.name, operator, args, env, evl)
    else:
        raise SxlTypeError('first element of a call must be a symbol or a procedure-valued expression')


def install_eval_rules():
    '''no keyword rule here, keywords come with the evaluator'''
    rules = {
        SxlVal: eval_literal,
        SymbolVal: eval_symbol,
        ListVal: eval_list,
    }
    update_eval_rules(rules)


def install_rules():
    install_stringify_value_rules()
    install_is_equal_rules()
    install_eval_rules()


'''
test support

test keywords are deliberately different from the default table in sxl_keywords
this shows the evaluator and the reader only depend on the table they are given
'''


def _test_do(evl: EvalRecurFuncType, env: Environment, args: Sequence[SxlVal]):
    res: SxlVal = UndefVal()
    for subexpr in args:
        res = evl(subexpr, env)
    return res


def _test_def(evl: EvalRecurFuncType, env: Environment, args: Sequence[SxlVal]):
    name = args[0]
    assert isinstance(name, SymbolVal)
    res = evl(args[1], env)
    env_define(env, name.name, res)
    return res


def _test_fn(evl: EvalRecurFuncType, env: Environment, args: Sequence[SxlVal]):
    paras = args[0]
    assert isinstance(paras, ListVal)
    return ProcVal('fn', [p.name for p in paras.contents if isinstance(p, SymbolVal)], args[1], env)


def _test_add(evl: EvalRecurFuncType, env: Environment, args: Sequence[SxlVal]):
    x = evl(args[0], env)
    y = evl(args[1], env)
    if not isinstance(x, IntegerVal) or not isinstance(y, IntegerVal):
        raise SxlTypeError('add requires integers')
    return IntegerVal(x.value + y.value)


def _test_show(evl: EvalRecurFuncType, env: Environment, args: Sequence[SxlVal]):
    sxl_print(' '.join([stringify_value(evl(subexpr, env)) for subexpr in args]) + '\n')
    return UndefVal()


_test_keywords: KeywordTableType = {
    'do': _test_do,
    'def': _test_def,
    'fn': _test_fn,
    'add': _test_add,
    'show': _test_show,
    '*': _test_add,
}

_test_prelude = '''
(def + (fn (a b) (add a b)))
(def five 5)
'''


def make_test_env(keywords: KeywordTableType):
    '''a parent-less environment holding the prelude, and a fresh child of it'''
    root = Environment({})
    make_evaluator(keywords)(parse_source(_test_prelude, keywords), root)
    return Environment({}, root)


def test_one(source: str, keywords: KeywordTableType = _test_keywords, env: Optional[Environment] = None, **kargs: str):
    '''
    each test tries to execute the source code as much as possible
    capture the output, panic and result
    print them and compare to expected value
    '''

    # source
    source = source.strip()
    print('* source: %s' % source)
    try:
        # tokenize
        tokens = tokenize_source(source)
        token_str = ', '.join([t.lexeme for t in tokens])
        print('* tokens: %s' % token_str)
        if 'tokens' in kargs:
            assert token_str == kargs['tokens']

        # read
        tree = parse_source(source, keywords)
        tree_str = stringify_expr(tree)
        print('* tree: %s' % tree_str)
        if 'tree' in kargs:
            assert tree_str == kargs['tree']

        # evaluate
        if env is None:
            env = make_test_env(keywords)
        result = make_evaluator(keywords)(tree, env)
        result_str = stringify_value(result)
        output_str = sxl_flush()
        if len(output_str):
            print('* output: %s' % output_str)
        if 'output' in kargs:
            assert output_str == kargs['output']
        print('* result: %s' % result_str)
        if 'result' in kargs:
            assert result_str == kargs['result']
    except SxlPanic as err:
        # any kind of panic
        output_str = sxl_flush()
        if len(output_str):
            print('* output: %s' % output_str)
        if 'output' in kargs:
            assert output_str == kargs['output']
        print('* panic: %s' % err.message)
        assert err.message == kargs['panic']
    print('----------')


def test_tokenize():
    test_one(
        '(add 1 2)',
        tokens='(, add, 1, 2, )'
    )
    test_one(
        '(show "a b, c") ; trailing comment (ignored)\n(show 1,2)',
        tokens='(, show, "a b, c", ), (, show, 1, 2, )',
        output='a b, c\n1 2\n'
    )
    test_one(
        '(show "esc\\"aped quote")',
        tokens='(, show, "esc\\"aped quote", )',
        output='esc"aped quote\n'
    )
    # parens are padded everywhere, inside strings too
    test_one(
        '(show "(c)")',
        tokens='(, show, " ( c ) ", )',
        output=' ( c ) \n'
    )
    # a comment starts at any ;, it cuts the string open
    test_one(
        '(show "semi;colon")',
        tokens='(, show, "semi',
        panic='lexical error at "semi   ) in line 1: unterminated string'
    )
    test_one(
        '(show "two\nlines")',
        tokens='(, show, "two lines", )',
        output='two lines\n'
    )
    test_one(
        '; only a comment',
        tokens='',
        tree='(do)',
        result='#<undef>'
    )


def test_read():
    test_one(
        '',
        tokens='',
        tree='(do)',
        result='#<undef>'
    )
    test_one(
        '(fn () (1 -23 true false "text" sym _under+score- * ()))',
        tree='(do (fn () (1 -23 true false "text" sym _under+score- * ())))',
        result='[procedure fn]'
    )
    test_one(
        '"a\\nb"',
        tree='(do "a\\nb")',
        result='a\nb'
    )
    test_one(
        '"\\x41\\x62\\t\\\'\\\\"',
        result='Ab\t\'\\'
    )
    test_one(
        ')',
        panic='syntax error at ) in line 1: unmatched right parenthesis'
    )
    test_one(
        '(show 1))',
        panic='syntax error at ) in line 1: unmatched right parenthesis'
    )
    test_one(
        '(show 1\n(show 2)',
        panic='syntax error at ( in line 1: EOF while reading'
    )
    test_one(
        '(show "abc',
        panic='lexical error at "abc  ) in line 1: unterminated string'
    )
    test_one(
        '(show 1)\n(show "bad \\q")',
        panic='lexical error at "bad \\q" in line 2: invalid escape sequence \'\\q\''
    )
    test_one(
        '"\\x4"',
        panic='lexical error at "\\x4" in line 1: invalid escape sequence \'\\x4\''
    )
    test_one(
        '(show a.b)',
        panic='lexical error at a.b in line 1: invalid token'
    )
    test_one(
        '"abc"def',
        panic='lexical error at "abc"def in line 1: invalid token'
    )
    test_one(
        '(< 1 2)',
        panic='lexical error at < in line 1: invalid token'
    )


def test_read_properties():
    # deterministic: same text, structurally identical tree
    source = '(def f (fn (x) (add x "s\\x41")))\n(f 1)'
    tree1 = parse_source(source, _test_keywords)
    tree2 = parse_source(source, _test_keywords)
    assert tree1 is not tree2
    assert is_equal(tree1, tree2)

    # empty list is a list of length zero, not an error
    tree = parse_source('()', _test_keywords)
    assert isinstance(tree, ListVal)
    empty = tree.contents[1]
    assert isinstance(empty, ListVal) and len(empty.contents) == 0

    # symbol and text of the same spelling are different values
    tree = parse_source('abc "abc"', _test_keywords)
    assert isinstance(tree, ListVal)
    assert isinstance(tree.contents[1], SymbolVal) and tree.contents[1] == SymbolVal('abc')
    assert isinstance(tree.contents[2], TextVal)
    assert not is_equal(tree.contents[1], tree.contents[2])

    # escapes are decoded at parse time
    tree = parse_source('"a\\nb" "\\x41"', _test_keywords)
    assert isinstance(tree, ListVal)
    text1 = tree.contents[1]
    text2 = tree.contents[2]
    assert isinstance(text1, TextVal) and text1.value == 'a\nb'
    assert isinstance(text2, TextVal) and text2.value == 'A'

    # the panic still carries the original error class
    try:
        parse_source(')', _test_keywords)
        assert False
    except SxlPanic as err:
        assert isinstance(err.error, SxlSyntaxError)
    print('* read properties: ok')
    print('----------')


def test_eval():
    # literals evaluate to themselves
    test_one(
        '"abc"',
        result='abc'
    )
    test_one(
        'true',
        result='true'
    )
    # + is an ordinary two argument procedure in the test prelude
    test_one(
        '(+ 1 2)',
        result='3'
    )
    # * is a keyword in the test table, read as symbol only because it is reserved
    test_one(
        '(* five 2)',
        result='7'
    )
    test_one(
        '(def f (fn (x) (+ x five))) (f 10)',
        result='15'
    )
    # call head can be an expression evaluating to procedure
    test_one(
        '((fn (x y) (+ x y)) 3 4)',
        result='7'
    )
    test_one(
        '(def adder (fn (n) (fn (x) (+ x n)))) ((adder 10) 5)',
        result='15'
    )
    # procedure value
    test_one(
        '(fn () 1)',
        result='[procedure fn]'
    )
    # side effects before an error stay visible
    test_one(
        '(show 1) undefined_name (show 2)',
        output='1\n',
        panic='name error: symbol undefined: undefined_name'
    )


def test_eval_errors():
    test_one(
        '(nothing 1)',
        panic='name error: procedure not found for symbol: nothing'
    )
    test_one(
        '(five 1)',
        panic='type error: symbol five is not a procedure'
    )
    test_one(
        '((add 1 2) 3)',
        panic='type error: cannot call IntegerVal value'
    )
    test_one(
        '(1 2)',
        panic='type error: first element of a call must be a symbol or a procedure-valued expression'
    )
    test_one(
        '("f" 2)',
        panic='type error: first element of a call must be a symbol or a procedure-valued expression'
    )
    test_one(
        '()',
        panic='type error: cannot evaluate empty list'
    )
    # arity is checked before evaluating any argument, so nothing is shown
    test_one(
        '(+ 1 2 (show 3))',
        output='',
        panic='arity error: + expect exactly 2 arguments, but get 3'
    )
    test_one(
        '((fn (x) x))',
        panic='arity error: fn expect exactly 1 arguments, but get 0'
    )
    # arity is not verified at definition time
    test_one(
        '(def g (fn (x) (+ x))) 1',
        result='1'
    )
    test_one(
        '(def g (fn (x) (g x))) (g 1)',
        panic='runtime error: maximum recursion depth exceeded'
    )


def test_env():
    root = Environment({'x': IntegerVal(1)})
    child = Environment({'y': IntegerVal(2)}, root)
    grandchild = env_extend(child, ['x'], [IntegerVal(3)])
    x_val = env_lookup(grandchild, 'x')
    y_val = env_lookup(grandchild, 'y')
    assert isinstance(x_val, IntegerVal) and x_val.value == 3
    assert isinstance(y_val, IntegerVal) and y_val.value == 2
    env_define(grandchild, 'y', IntegerVal(4))
    y_val = env_lookup(child, 'y')
    assert isinstance(y_val, IntegerVal) and y_val.value == 2
    try:
        env_lookup(child, 'z')
        assert False
    except SxlEnvError as err:
        assert err.name == 'z'
    print('* environment: ok')
    print('----------')


def test_lexical_scope():
    # f captures n from its defining call, the caller's own n is not seen
    test_one(
        '''
        (def make (fn (n) (fn (x) (+ x n))))
        (def f (make 100))
        (def call_with_n (fn (n) (f 1)))
        (call_with_n 5)
        ''',
        result='101'
    )
    # invocation environment does not leak into the caller
    test_one(
        '''
        (def g (fn (local) local))
        (g 1)
        local
        ''',
        panic='name error: symbol undefined: local'
    )


def test_custom_keywords():
    keywords: KeywordTableType = {
        'begin': _test_do,
        'define': _test_def,
        'lambda': _test_fn,
    }
    env = Environment({})
    tree = parse_source('(define id (lambda (v) v)) (id 42)', keywords, 'begin')
    res = make_evaluator(keywords)(tree, env)
    assert isinstance(res, IntegerVal) and res.value == 42
    # def is not special any more, so it is looked up like any symbol
    try:
        make_evaluator(keywords)(parse_source('(def x 1)', keywords, 'begin'), env)
        assert False
    except SxlPanic as err:
        assert isinstance(err.error, SxlNameError)
        assert err.message == 'name error: procedure not found for symbol: def'
    print('* custom keywords: ok')
    print('----------')


def test():
    test_tokenize()
    test_read()
    test_read_properties()
    test_eval()
    test_eval_errors()
    test_env()
    test_lexical_scope()
    test_custom_keywords()


if __name__ == '__main__':
    install_rules()
    test()
