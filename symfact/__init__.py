"""Cholesky factorizations of dense, banded and semi-definite symmetric matrices."""

__authors__ = "Matt Graham"
__license__ = "MIT"

import symfact.band
import symfact.cholesky
import symfact.errors
import symfact.matrices
import symfact.pivoted
import symfact.types
import symfact.utils
from symfact.band import BandCholesky
from symfact.cholesky import Cholesky
from symfact.pivoted import PivotedCholesky
