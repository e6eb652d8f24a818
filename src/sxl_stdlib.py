'''
the standard library and the embedding api

the root environment has no parent, the bundled STDLIB_SOURCE is evaluated into it exactly once
after that the root is only read: every session is a fresh empty environment whose parent is the root
def in a session writes into the session, so sessions cannot change the root or see each other

embedding api:
parse(source) -> value tree
evaluate(node, env) -> value
get_root_env() -> the shared root
make_session_env() -> a fresh environment chained to the root
run_source(source, env) -> parse and evaluate, in a fresh session unless env is given

importing this module installs the rules and raises the recursion limit, so the api is ready to use
each call of a user procedure costs about a dozen python frames
'''

import sys
import math
from typing import Optional

from sxl_interpreter import Environment, IntegerVal, SxlNameError, SxlPanic, SxlVal, install_rules, is_equal, \
    make_evaluator, parse_source, stringify_value, sxl_flush, test_one
from sxl_keywords import make_keywords


STDLIB_SOURCE = '''
; small integer helpers
(def inc (fn (n) (+ n 1)))
(def dec (fn (n) (- n 1)))
(def neg (fn (n) (- 0 n)))
(def zero (fn (n) (= n 0)))
(def abs (fn (n) (if (< n 0) (neg n) n)))
(def square (fn (n) (* n n)))
(def min (fn (a b) (if (< a b) a b)))
(def max (fn (a b) (if (> a b) a b)))

; remainder has the sign of the dividend, like the truncating /
(def mod (fn (a b) (- a (* b (/ a b)))))
(def even (fn (n) (zero (mod n 2))))
(def odd (fn (n) (not (even n))))

(def fact (fn (n)
  (if (< n 2)
    1
    (* n (fact (dec n))))))

(def fib (fn (n)
  (if (< n 2)
    n
    (+ (fib (- n 1)) (fib (- n 2))))))

; higher order
(def compose (fn (f g) (fn (x) (f (g x)))))
(def twice (fn (f) (compose f f)))
'''

sys.setrecursionlimit(max(sys.getrecursionlimit(), 10000))
install_rules()

_keywords = make_keywords()
_evaluate = make_evaluator(_keywords)


def parse(source: str):
    return parse_source(source, _keywords.keys())


def evaluate(node: SxlVal, env: Environment):
    return _evaluate(node, env)


def make_root_env():
    root = Environment({})
    evaluate(parse(STDLIB_SOURCE), root)
    return root


_root_env: Optional[Environment] = None


def get_root_env():
    '''built on first use, then shared by every session of the process'''
    global _root_env
    if _root_env is None:
        _root_env = make_root_env()
    return _root_env


def make_session_env():
    return Environment({}, get_root_env())


def run_source(source: str, env: Optional[Environment] = None):
    if env is None:
        env = make_session_env()
    return evaluate(parse(source), env)


'''tests'''


def test_one_std(source: str, **kargs: str):
    test_one(source, _keywords, make_session_env(), **kargs)


def test_stdlib():
    test_one_std(
        '(inc 1)',
        result='2'
    )
    test_one_std(
        '(print (abs -3) (square 4) (min 1 2) (max 1 2) (neg 5))',
        output='3 16 1 2 -5\n'
    )
    test_one_std(
        '(print (mod 7 3) (mod -7 3) (even 4) (odd 4))',
        output='1 -1 true false\n'
    )
    test_one_std(
        '(fact 10)',
        result='3628800'
    )
    test_one_std(
        '(fib 15)',
        result='610'
    )
    test_one_std(
        '((twice inc) 5)',
        result='7'
    )
    test_one_std(
        '((compose square inc) 3)',
        result='16'
    )
    test_one_std(
        '(inc 1 2)',
        panic='arity error: inc expect exactly 1 arguments, but get 2'
    )
    test_one_std(
        'undefined_name',
        panic='name error: symbol undefined: undefined_name'
    )


def test_deep_recursion():
    res = run_source('(fact 200)')
    assert isinstance(res, IntegerVal) and res.value == math.factorial(200)
    test_one_std(
        '(def count (fn (n) (if (= n 0) 0 (inc (count (dec n)))))) (count 300)',
        result='300'
    )
    print('* deep recursion: ok')
    print('----------')


def test_sessions():
    root = get_root_env()
    assert get_root_env() is root
    root_names = set(root.bindings.keys())

    # a session may shadow a library name without touching the root
    session1 = make_session_env()
    session2 = make_session_env()
    run_source('(def inc (fn (n) (+ n 100))) (def mine 1)', session1)
    res1 = run_source('(inc 1)', session1)
    res2 = run_source('(inc 1)', session2)
    assert isinstance(res1, IntegerVal) and res1.value == 101
    assert isinstance(res2, IntegerVal) and res2.value == 2
    assert set(root.bindings.keys()) == root_names

    # library procedures are resolved through the root, not through the caller
    res = run_source('(def dec (fn (n) 0)) (fact 5)', session2)
    assert isinstance(res, IntegerVal) and res.value == 120

    # sessions do not see each other
    try:
        run_source('mine', session2)
        assert False
    except SxlPanic as err:
        assert isinstance(err.error, SxlNameError)
        assert err.error.name == 'mine'

    # a fresh session each time when no env is given
    run_source('(def temp 1)')
    try:
        run_source('temp')
        assert False
    except SxlPanic as err:
        assert isinstance(err.error, SxlNameError)

    # independent roots can be built from the same library
    other = make_root_env()
    assert other is not root
    assert set(other.bindings.keys()) == root_names
    print('* sessions: ok')
    print('----------')


def test_embedding():
    tree = parse('(print "hi") (+ 1 2)')
    assert is_equal(tree, parse('(print "hi") (+ 1 2)'))
    res = evaluate(tree, make_session_env())
    assert stringify_value(res) == '3'
    assert sxl_flush() == 'hi\n'
    print('* embedding: ok')
    print('----------')


def test():
    test_stdlib()
    test_deep_recursion()
    test_sessions()
    test_embedding()


if __name__ == '__main__':
    test()
