import sys

from hsmgen.codegen import main

if __name__ == '__main__':
    sys.exit(main())
