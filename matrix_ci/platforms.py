"""
Static knowledge about the platforms that jobs can run on.

Each platform is defined once here, with its OS family and the capabilities
that jobs care about. Nothing else in the codebase should guess these from
the platform's name.
"""
from enum import Enum
from typing import NamedTuple, Dict, Tuple

from matrix_ci.exceptions import BadConfig


class OsFamily(Enum):
    LINUX_CONTAINER = "linux-container"
    FREEBSD = "freebsd"
    WINDOWS = "windows"
    BARE_METAL_TOOLCHAIN = "bare-metal-toolchain"


class Platform(NamedTuple):
    """
    :param name:                    Identifier, also the name of the
                                    directory holding its Dockerfile.
    :param family:                  The :class:`OsFamily`.
    :param node_label:              Which kind of worker runs this platform's
                                    jobs.
    :param shorthand:               Short form used in job names.
    :param has_container_runtime:   Jobs run inside a docker image built for
                                    this platform.
    :param lacks_tls_tools:         Reference OpenSSL / GnuTLS builds are not
                                    maintained for this platform.
    :param make_is_gnu:             The default `make` is GNU make.
    """

    name: str
    family: OsFamily
    node_label: str
    shorthand: str
    has_container_runtime: bool = False
    lacks_tls_tools: bool = False
    make_is_gnu: bool = True


def _ubuntu(version: str) -> Platform:
    return Platform(
        name=f"ubuntu-{version}",
        family=OsFamily.LINUX_CONTAINER,
        node_label="container-host",
        shorthand=f"u{version.split('.')[0]}",
        has_container_runtime=True,
    )


PLATFORMS: Dict[str, Platform] = {
    platform.name: platform
    for platform in [
        _ubuntu("16.04"),
        _ubuntu("18.04"),
        _ubuntu("20.04"),
        _ubuntu("22.04"),
        Platform(
            name="arm-compilers",
            family=OsFamily.BARE_METAL_TOOLCHAIN,
            node_label="container-host",
            shorthand="armcc",
            has_container_runtime=True,
            lacks_tls_tools=True,
        ),
        Platform(
            name="freebsd",
            family=OsFamily.FREEBSD,
            node_label="freebsd",
            shorthand="fbsd",
            lacks_tls_tools=True,
            make_is_gnu=False,
        ),
        Platform(
            name="windows",
            family=OsFamily.WINDOWS,
            node_label="windows",
            shorthand="win",
        ),
    ]
}

# When a job can run on multiple Linux platforms, it runs on the first element
# of this list that supports it.
LINUX_PLATFORMS: Tuple[str, ...] = (
    "ubuntu-16.04",
    "ubuntu-18.04",
    "ubuntu-20.04",
    "ubuntu-22.04",
    "arm-compilers",
)
BSD_PLATFORMS: Tuple[str, ...] = ("freebsd",)

# No component that does TLS system testing: suitable OpenSSL and GnuTLS
# versions are not maintained on secondary platforms.
FREEBSD_ALL_SH_COMPONENTS: Tuple[str, ...] = (
    "test_default_out_of_box",
    "test_clang_opt",
    "test_cmake_shared",
    "test_cmake_out_of_source",
)

# all.sh cannot detect the arm compilers and always reports build_armcc as
# available, so its platform is chosen here.
COMPONENT_OVERRIDES: Dict[str, str] = {"build_armcc": "arm-compilers"}


def get(name: str) -> Platform:
    "Look up a platform by name"
    try:
        return PLATFORMS[name]
    except KeyError as e:
        raise BadConfig(f"Unknown platform: {name}") from e
