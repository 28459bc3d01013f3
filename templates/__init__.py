"""Code-defined template manifests shipped with the CRM."""

from . import blank, imobi360

BUILTIN_MANIFESTS = (imobi360.MANIFEST, blank.MANIFEST)

__all__ = ["BUILTIN_MANIFESTS"]
