"""zonebuild - Build images from a cloned base image, with cleanup on failure."""

from .compensation import compensate as compensate
from .config import BuildConfig as BuildConfig
from .config import Manifest as Manifest
from .context import BuildContext as BuildContext
from .errors import BuildError as BuildError
from .host import Host as Host
from .host import ImageTool as ImageTool
from .pipeline import Pipeline as Pipeline
from .pipeline import build as build
from .stages import FORWARD_STAGES as FORWARD_STAGES
from .stages import Stage as Stage
