'''
run an sxl source file in a fresh session

usage: python sxl_main.py FILE

unlike tests, here print goes straight to stdout, and the first error is written to stderr with exit status 1
output printed before the error stays printed
'''

import sys
from typing import List, Optional

from sxl_interpreter import sxl_config
from sxl_stdlib import run_source


def run_file(fpath: str):
    with open(fpath, encoding='utf-8') as f:
        source = f.read()
    return run_source(source)


def main(argv: Optional[List[str]] = None):
    if argv is None:
        argv = sys.argv[1:]
    if len(argv) != 1:
        print('usage: sxl FILE', file=sys.stderr)
        return 2
    sxl_config['suppress_panic'] = False
    sxl_config['suppress_print'] = False
    run_file(argv[0])
    return 0


if __name__ == '__main__':
    sys.exit(main())
