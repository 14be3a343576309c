"""Release Stager -- assemble the source-free distribution tree."""

from plugship.stage.stager import ReleaseStager, tree_files

__all__ = ["ReleaseStager", "tree_files"]
