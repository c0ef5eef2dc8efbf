from __future__ import annotations

import re
from typing import Union

from ..errors import ActionParamError
from ..types import InstallPackages, RemovePackages

_PACKAGE_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9.+_:~=*/@-]*$")


def check_packages(action: Union[InstallPackages, RemovePackages]) -> None:
    if not action.packages:
        raise ActionParamError(f"{action.kind}: at least one package is required")
    bad = [pkg for pkg in action.packages if not _PACKAGE_RE.match(pkg)]
    if bad:
        raise ActionParamError(f"{action.kind}: invalid package name(s) {', '.join(map(repr, bad))}")
