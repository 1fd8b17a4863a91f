from .fileformat import *
from .decompiler import *
