"""HBA controller implementations"""

from .base import BaseController
from .sas_ircu import SasIrcuController

__all__ = ["BaseController", "SasIrcuController"]
