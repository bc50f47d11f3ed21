# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""Package dial_protocol implements the DIAL (Discovery And Launch) protocol
"""

# The following line is automatically updated with "semantic-release version"
__version__ =  "1.0.0"


__all__ = [ '__version__' ]
