import runpy
import sys

# debugpy puts the real arguments after "--"
if "--" in sys.argv:
    args = sys.argv[sys.argv.index("--") + 1 :]
else:
    args = sys.argv[1:]

# Typer should see a clean argv
sys.argv = ["pycomrade"] + args

# same as: python -m pycomrade ...
runpy.run_module("pycomrade", run_name="__main__")
