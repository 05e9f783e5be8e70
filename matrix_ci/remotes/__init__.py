from .github import Github
from .email import Email
from .mock import Mock
