'''
this script checks all python scripts in src directory
it runs every script, detects pass/failure based on return code, and report that
under pytest, test_all asserts that every script passed
'''

import os
import sys
import glob
import subprocess

all_fpaths = glob.glob(os.path.join(os.path.dirname(os.path.abspath(__file__)), 'src/*.py'))
all_fpaths.sort()

# sxl_main expects a source file, it is checked separately by test_main
script_fpaths = [fpath for fpath in all_fpaths if os.path.basename(fpath) != 'sxl_main.py']
main_fpath = os.path.join(os.path.dirname(os.path.abspath(__file__)), 'src/sxl_main.py')
src_dpath = os.path.join(os.path.dirname(os.path.abspath(__file__)), 'src')


def run_script(fpath: str, *args: str):
    return subprocess.run(
        [sys.executable, fpath, *args], stdout=subprocess.PIPE, stderr=subprocess.PIPE, universal_newlines=True)


def run_code(code: str):
    return subprocess.run(
        [sys.executable, '-c', code], cwd=src_dpath, stdout=subprocess.PIPE, stderr=subprocess.PIPE, universal_newlines=True)


def test_all():
    for fpath in script_fpaths:
        completed = run_script(fpath)
        assert completed.returncode == 0, '%s: FAILED (%d)\n%s' % (os.path.basename(fpath), completed.returncode, completed.stderr)


def test_main(tmp_path):
    good = tmp_path / 'good.sxl'
    good.write_text('(def x (fact 5)) ; comment\n(print "x is" x)\n', encoding='utf-8')
    completed = run_script(main_fpath, str(good))
    assert completed.returncode == 0
    assert completed.stdout == 'x is 120\n'

    bad = tmp_path / 'bad.sxl'
    bad.write_text('(print "before")\n(inc 1 2)\n(print "after")\n', encoding='utf-8')
    completed = run_script(main_fpath, str(bad))
    assert completed.returncode == 1
    assert completed.stdout == 'before\n'
    assert completed.stderr == 'arity error: inc expect exactly 1 arguments, but get 2\n'

    completed = run_script(main_fpath)
    assert completed.returncode == 2


def test_embedding_fresh_process():
    # no install_rules call, importing sxl_stdlib is enough
    completed = run_code(
        'from sxl_interpreter import stringify_value\n'
        'from sxl_stdlib import run_source\n'
        'print(stringify_value(run_source("(+ 1 2)")))\n'
        'print(stringify_value(run_source("(= (fact 200) (* 200 (fact 199)))")))\n')
    assert completed.returncode == 0, completed.stderr
    assert completed.stdout == '3\ntrue\n'


def test_main_reads_argv_when_called(tmp_path):
    good = tmp_path / 'good.sxl'
    good.write_text('(print (inc 41))\n', encoding='utf-8')
    completed = run_code(
        'import sys\n'
        'import sxl_main\n'
        'sys.argv = ["sxl", %r]\n'
        'sys.exit(sxl_main.main())\n' % str(good))
    assert completed.returncode == 0, completed.stderr
    assert completed.stdout == '42\n'


if __name__ == '__main__':
    for fpath in script_fpaths:
        retcode = run_script(fpath).returncode
        status = 'PASSED' if retcode == 0 else 'FAILED (%d)' % retcode
        bname = os.path.basename(fpath)
        print('%s: %s' % (bname, status))
