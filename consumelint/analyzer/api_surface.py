"""Public API surface of the target array library (jax-js v0.1.9).

Edit manually when jax-js adds new getters or methods. The derived sets used by
the analyzer (non-consuming props, array-returning and terminal methods) are
computed in vocabulary.py from these lists.
"""

LIBRARY_NAME = "jax-js"
LIBRARY_VERSION = "0.1.9"

# Public getters on Tracer and Array classes (non-consuming accesses).
EXTRACTED_GETTERS = (
    "aval",
    "device",
    "dtype",
    "ndim",
    "ref",
    "refCount",
    "shape",
    "size",
    "weakType",
)

# Public methods on Tracer and Array classes (consuming operations).
EXTRACTED_METHODS = (
    "add",
    "all",
    "any",
    "argsort",
    "astype",
    "blockUntilReady",
    "data",
    "dataSync",
    "diagonal",
    "dispose",
    "div",
    "equal",
    "flatten",
    "greater",
    "greaterEqual",
    "item",
    "js",
    "jsAsync",
    "less",
    "lessEqual",
    "max",
    "mean",
    "min",
    "mod",
    "mul",
    "neg",
    "notEqual",
    "prod",
    "ravel",
    "reshape",
    "slice",
    "sort",
    "sub",
    "sum",
    "toString",
    "transpose",
)

# Methods that consume the array and return a non-Array value.
# MANUAL: update when a new terminal method lands on the Array class.
TERMINAL_METHODS = (
    "data",
    "dataSync",
    "js",
    "jsAsync",
    "item",
    "dispose",
    "tolist",
    "tobytes",
)

# Syntactically methods, but they do not decrement the reference count.
#   toString        - string conversion, leaves the array alive
#   blockUntilReady - readiness barrier returning `this`
NON_CONSUMING_METHODS = ("toString", "blockUntilReady")

# Top-level / namespace functions that create arrays from scratch.
FACTORY_NAMES = (
    "array",
    "zeros",
    "ones",
    "full",
    "eye",
    "identity",
    "arange",
    "linspace",
    "logspace",
    "zerosLike",
    "onesLike",
    "fullLike",
    "tri",
    "tril",
    "triu",
    "diag",
    "asarray",
    "concatenate",
    "stack",
    "vstack",
    "hstack",
    "dstack",
    "tile",
    "repeat",
    "meshgrid",
    "where",
    "empty",
    "emptyLike",
)

# Array-returning methods that do not exist on standard JS types, so a call
# to one of them strongly implies an array receiver.
UNAMBIGUOUS_ARRAY_METHODS = (
    "neg",
    "astype",
    "transpose",
    "reshape",
    "ravel",
    "argsort",
    "diagonal",
    "greaterEqual",
    "lessEqual",
    "notEqual",
    "flatten",
    "squeeze",
    "expandDims",
    "swapaxes",
    "broadcastTo",
    "conj",
    "clip",
)

# Callees known not to take ownership of their arguments.
SAFE_CALLEE_NAMES = ("expect", "assert", "String", "Number", "Boolean")
SAFE_CALLEE_NAMESPACES = ("console", "assert", "JSON", "Array", "Math", "Object")

KEEP_ALIVE_ACCESSOR = "ref"
RELEASE_METHOD = "dispose"
BORROW_DIRECTIVE = "@jax-borrow"
