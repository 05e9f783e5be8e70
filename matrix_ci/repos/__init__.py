from .git import Git
from .mock import Mock
