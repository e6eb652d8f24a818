'''
the default keyword table: def print do fn let if or and not + - * / < > =

every keyword is a handler (evaluate, env, args) -> value, receiving the raw arguments
so each handler decides its own evaluation order, and may skip arguments altogether
e.g. if evaluates only one branch, and/or short-circuit, def never evaluates the name

the evaluator gets this table through make_evaluator(make_keywords())
the reader gets its keys, so * / < > = are read as symbols although they are not identifier characters

shape errors (wrong number of expressions, name not a symbol) are syntax errors
operand errors (adding a text) are type errors
'''

from typing import Callable, List, Optional, Sequence, Set, cast

from sxl_interpreter import BooleanVal, Environment, EvalRecurFuncType, IntegerVal, KeywordTableType, ListVal, \
    ProcVal, SxlError, SxlSyntaxError, SxlTypeError, SxlVal, SymbolVal, UndefVal, env_define, env_extend, \
    install_rules, is_equal, is_truthy, parse_source, stringify_value, sxl_print, test_one


class SxlArithmeticError(SxlError):
    def __str__(self) -> str:
        return 'arithmetic error: %s' % self.message


'''shape checking'''


def check_count(keyword: str, args: Sequence[SxlVal], low: int, high: Optional[int]):
    '''counting the keyword itself, like the expressions of the whole list, high is None for no upper limit'''
    count = len(args) + 1
    if count < low or (high is not None and count > high):
        if low == high:
            expect = '%d' % low
        elif high is not None:
            expect = '%d or %d' % (low, high)
        else:
            expect = 'at least %d' % low
        raise SxlSyntaxError('%s should have %s expressions, now %d' % (keyword, expect, count))


def check_symbol(keyword: str, sv: SxlVal, prefix: str):
    if not isinstance(sv, SymbolVal):
        raise SxlSyntaxError('%s %s should be symbol, now %s' % (keyword, prefix, type(sv).__name__))
    return sv.name


def check_parameters(keyword: str, names: List[str]):
    unq: Set[str] = set([])
    for name in names:
        if name in unq:
            raise SxlSyntaxError('%s parameter shows up twice: %s' % (keyword, name))
        else:
            unq.add(name)


'''binding and control forms'''


def kw_do(evl: EvalRecurFuncType, env: Environment, args: Sequence[SxlVal]):
    '''return the last expression'''
    res: SxlVal = UndefVal()
    for subexpr in args:
        res = evl(subexpr, env)
    return res


def kw_def(evl: EvalRecurFuncType, env: Environment, args: Sequence[SxlVal]):
    '''bind in the current environment only, return the value bound'''
    check_count('def', args, 3, 3)
    name = check_symbol('def', args[0], 'name')
    res = evl(args[1], env)
    env_define(env, name, res)
    return res


def kw_fn(evl: EvalRecurFuncType, env: Environment, args: Sequence[SxlVal]):
    check_count('fn', args, 3, 3)
    paras = args[0]
    if not isinstance(paras, ListVal):
        raise SxlSyntaxError('fn parameters should be list, now %s' % type(paras).__name__)
    names = [check_symbol('fn', p, 'parameter') for p in paras.contents]
    check_parameters('fn', names)
    return ProcVal('fn', names, args[1], env)


def kw_let(evl: EvalRecurFuncType, env: Environment, args: Sequence[SxlVal]):
    '''
    (let ((name init) ...) body)
    initializers are evaluated in the current environment, then bound together in a child environment
    '''
    check_count('let', args, 3, 3)
    pairs = args[0]
    if not isinstance(pairs, ListVal):
        raise SxlSyntaxError('let bindings should be list, now %s' % type(pairs).__name__)
    names: List[str] = []
    inits: List[SxlVal] = []
    for pair in pairs.contents:
        if not isinstance(pair, ListVal) or len(pair.contents) != 2:
            raise SxlSyntaxError('let bindings should be list of list of 2 expressions')
        names.append(check_symbol('let', pair.contents[0], 'name'))
        inits.append(pair.contents[1])
    check_parameters('let', names)
    values = [evl(subexpr, env) for subexpr in inits]
    return evl(args[1], env_extend(env, names, values))


def kw_if(evl: EvalRecurFuncType, env: Environment, args: Sequence[SxlVal]):
    '''return the successful branch'''
    check_count('if', args, 3, 4)
    if is_truthy(evl(args[0], env)):
        return evl(args[1], env)
    elif len(args) == 3:
        return evl(args[2], env)
    else:
        return UndefVal()


def kw_and(evl: EvalRecurFuncType, env: Environment, args: Sequence[SxlVal]):
    '''return the first false, otherwise the last'''
    res: SxlVal = BooleanVal(True)
    for subexpr in args:
        res = evl(subexpr, env)
        if not is_truthy(res):
            return res
    return res


def kw_or(evl: EvalRecurFuncType, env: Environment, args: Sequence[SxlVal]):
    '''return the first true, otherwise the last'''
    res: SxlVal = BooleanVal(False)
    for subexpr in args:
        res = evl(subexpr, env)
        if is_truthy(res):
            return res
    return res


def kw_not(evl: EvalRecurFuncType, env: Environment, args: Sequence[SxlVal]):
    check_count('not', args, 2, 2)
    return BooleanVal(not is_truthy(evl(args[0], env)))


def kw_print(evl: EvalRecurFuncType, env: Environment, args: Sequence[SxlVal]):
    values = [evl(subexpr, env) for subexpr in args]
    sxl_print(' '.join([stringify_value(sv) for sv in values]) + '\n')
    return UndefVal()


'''integer arithmetic'''


def eval_integers(keyword: str, evl: EvalRecurFuncType, env: Environment, args: Sequence[SxlVal]):
    res: List[int] = []
    for subexpr in args:
        sv = evl(subexpr, env)
        if not isinstance(sv, IntegerVal):
            raise SxlTypeError('%s requires integer operands, now %s' % (keyword, type(sv).__name__))
        res.append(sv.value)
    return res


def truncate_div(x: int, y: int):
    if y == 0:
        raise SxlArithmeticError('division by zero')
    q = abs(x) // abs(y)
    return q if (x < 0) == (y < 0) else -q


def make_kw_int_fold(keyword: str, py_func: Callable[[int, int], int], py_unary: Callable[[int], int]):
    '''one operand goes through py_unary, more operands are folded from the left'''
    def _kw_int_fold(evl: EvalRecurFuncType, env: Environment, args: Sequence[SxlVal]) -> SxlVal:
        check_count(keyword, args, 2, None)
        values = eval_integers(keyword, evl, env, args)
        if len(values) == 1:
            return IntegerVal(py_unary(values[0]))
        res = values[0]
        for value in values[1:]:
            res = py_func(res, value)
        return IntegerVal(res)
    return _kw_int_fold


kw_add = make_kw_int_fold('+', lambda a, b: a+b, lambda a: a)
kw_sub = make_kw_int_fold('-', lambda a, b: a-b, lambda a: -a)
kw_mul = make_kw_int_fold('*', lambda a, b: a*b, lambda a: a)
kw_div = make_kw_int_fold('/', truncate_div, lambda a: a)


def make_kw_int_compare(keyword: str, py_func: Callable[[int, int], bool]):
    def _kw_int_compare(evl: EvalRecurFuncType, env: Environment, args: Sequence[SxlVal]) -> SxlVal:
        check_count(keyword, args, 3, 3)
        x, y = eval_integers(keyword, evl, env, args)
        return BooleanVal(py_func(x, y))
    return _kw_int_compare


kw_lt = make_kw_int_compare('<', lambda a, b: a < b)
kw_gt = make_kw_int_compare('>', lambda a, b: a > b)


def kw_equal(evl: EvalRecurFuncType, env: Environment, args: Sequence[SxlVal]):
    check_count('=', args, 3, 3)
    x = evl(args[0], env)
    y = evl(args[1], env)
    return BooleanVal(is_equal(x, y))


def make_keywords() -> KeywordTableType:
    '''a new table every time, so a host can add or drop keywords without affecting others'''
    return {
        'def': kw_def,
        'print': kw_print,
        'do': kw_do,
        'fn': kw_fn,
        'let': kw_let,
        'if': kw_if,
        'or': kw_or,
        'and': kw_and,
        'not': kw_not,
        '+': kw_add,
        '-': kw_sub,
        '*': kw_mul,
        '/': kw_div,
        '<': kw_lt,
        '>': kw_gt,
        '=': kw_equal,
    }


'''tests'''


def test_one_kw(source: str, **kargs: str):
    '''the default keywords over an empty parent-less environment, no standard library'''
    test_one(source, make_keywords(), Environment({}), **kargs)


def test_binding():
    test_one_kw(
        '(def x 1) (def y (+ x 1)) y',
        result='2'
    )
    test_one_kw(
        '(def 1 2)',
        panic='syntax error: def name should be symbol, now IntegerVal'
    )
    test_one_kw(
        '(def x)',
        panic='syntax error: def should have 3 expressions, now 2'
    )
    test_one_kw(
        '(let ((x 1) (y 2)) (+ x y))',
        result='3'
    )
    # initializers see the outer x, not the one being bound
    test_one_kw(
        '(def x 10) (let ((x 1) (y x)) (+ x y))',
        result='11'
    )
    # let bindings do not leak out
    test_one_kw(
        '(let ((z 1)) z) z',
        panic='name error: symbol undefined: z'
    )
    test_one_kw(
        '(let ((x 1 2)) x)',
        panic='syntax error: let bindings should be list of list of 2 expressions'
    )
    test_one_kw(
        '(let ((x 1) (x 2)) x)',
        panic='syntax error: let parameter shows up twice: x'
    )
    # def inside a procedure body stays in the invocation environment
    test_one_kw(
        '(def f (fn (a) (def inner a))) (f 1) inner',
        panic='name error: symbol undefined: inner'
    )


def test_fn():
    test_one_kw(
        '(def square (fn (x) (* x x))) (square 7)',
        result='49'
    )
    test_one_kw(
        '''
        (def fact (fn (n)
          (if (< n 2)
            1
            (* n (fact (- n 1))))))
        (fact 10)
        ''',
        result='3628800'
    )
    test_one_kw(
        '(fn (x x) x)',
        panic='syntax error: fn parameter shows up twice: x'
    )
    test_one_kw(
        '(fn x x)',
        panic='syntax error: fn parameters should be list, now SymbolVal'
    )
    test_one_kw(
        '(fn ("x") x)',
        panic='syntax error: fn parameter should be symbol, now TextVal'
    )
    test_one_kw(
        '(def f (fn (a b) a)) (f 1)',
        panic='arity error: f expect exactly 2 arguments, but get 1'
    )


def test_lexical_capture():
    # the procedure is made inside let, then called where the let binding is out of reach
    test_one_kw(
        '''
        (def get (let ((secret 42)) (fn () secret)))
        (def secret 0)
        (get)
        ''',
        result='42'
    )
    # a counter-like closure: each call of make returns a procedure over its own n
    test_one_kw(
        '''
        (def make (fn (n) (fn (x) (+ x n))))
        (def add1 (make 1))
        (def add5 (make 5))
        (print (add1 10) (add5 10))
        (def n 1000)
        (add1 0)
        ''',
        output='11 15\n',
        result='1'
    )
    # dynamic scoping would give 2 here
    test_one_kw(
        '''
        (def x 1)
        (def show_x (fn () x))
        (def call_with_x (fn (x) (show_x)))
        (call_with_x 2)
        ''',
        result='1'
    )


def test_control():
    test_one_kw(
        '(if true 1 2)',
        result='1'
    )
    # only false is falsy
    test_one_kw(
        '(if 0 "zero" "no")',
        result='zero'
    )
    test_one_kw(
        '(if false 1)',
        result='#<undef>'
    )
    test_one_kw(
        '(if 1 2 3 4)',
        panic='syntax error: if should have 3 or 4 expressions, now 5'
    )
    # short circuit keeps the unbound name from being evaluated
    test_one_kw(
        '(and false undefined_name)',
        result='false'
    )
    test_one_kw(
        '(or 1 undefined_name)',
        result='1'
    )
    test_one_kw(
        '(and 1 2 3)',
        result='3'
    )
    test_one_kw(
        '(or false false)',
        result='false'
    )
    test_one_kw(
        '(and)',
        result='true'
    )
    test_one_kw(
        '(not 0)',
        result='false'
    )
    test_one_kw(
        '(do)',
        result='#<undef>'
    )
    test_one_kw(
        '(do 1 2 3)',
        result='3'
    )


def test_print():
    test_one_kw(
        '(print "a\\tb" 1 true (fn () 1))',
        output='a\tb 1 true [procedure fn]\n',
        result='#<undef>'
    )
    test_one_kw(
        '(print)',
        output='\n'
    )
    test_one_kw(
        '(print "before") (print undefined_name) (print "after")',
        output='before\n',
        panic='name error: symbol undefined: undefined_name'
    )


def test_arithmetic():
    test_one_kw(
        '(+ 1 2)',
        result='3'
    )
    test_one_kw(
        '(+ 1 2 3 4)',
        result='10'
    )
    test_one_kw(
        '(- 5)',
        result='-5'
    )
    test_one_kw(
        '(- 10 1 2)',
        result='7'
    )
    test_one_kw(
        '(* 2 -3)',
        result='-6'
    )
    test_one_kw(
        '(/ 7 2)',
        result='3'
    )
    test_one_kw(
        '(/ -7 2)',
        result='-3'
    )
    test_one_kw(
        '(/ 1 0)',
        panic='arithmetic error: division by zero'
    )
    test_one_kw(
        '(+ 1 "2")',
        panic='type error: + requires integer operands, now TextVal'
    )
    test_one_kw(
        '(+)',
        panic='syntax error: + should have at least 2 expressions, now 1'
    )
    test_one_kw(
        '(< 1 2)',
        result='true'
    )
    test_one_kw(
        '(> 1 2)',
        result='false'
    )
    test_one_kw(
        '(< 1 2 3)',
        panic='syntax error: < should have 3 expressions, now 4'
    )
    test_one_kw(
        '(= "a" "a")',
        result='true'
    )
    test_one_kw(
        '(= 1 "1")',
        result='false'
    )


def test_keyword_spelling():
    # keywords are symbols when read, even outside the identifier characters
    tree = parse_source('(* 1 2) (< 1 2) (= 1 2)', make_keywords().keys())
    tree = cast(ListVal, tree)
    for form in tree.contents[1:]:
        head = cast(ListVal, form).contents[0]
        assert isinstance(head, SymbolVal)
    print('* keyword spelling: ok')
    print('----------')


def test():
    test_binding()
    test_fn()
    test_lexical_capture()
    test_control()
    test_print()
    test_arithmetic()
    test_keyword_spelling()


if __name__ == '__main__':
    install_rules()
    test()
