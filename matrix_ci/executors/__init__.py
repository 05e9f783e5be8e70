from .shell import Shell
from .docker import Docker
from .mock import Mock
