# NOTE: This is what registers our operator's functions with kopf so that
#       `kopf run -m objectstores.operator` can work. If you add more handler
#       modules to the operator, you must import them here.
# ruff: noqa: F401
from . import operator
from . import objectstore
