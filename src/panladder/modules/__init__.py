"""Pipeline modules for different processing stages."""

from . import sequences
from . import dependencies
from . import tools
from . import deflation
from . import similarity
from . import hierarchy
from . import reinflation
from . import output
