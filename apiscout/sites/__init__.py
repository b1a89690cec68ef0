# Sites module - Target site layer
# v2.0 - Profile-driven sites replace hard-coded site classes
#
# This module describes how to log in to a target, where its tokens live
# and which headers its own XHR calls carry.

from apiscout.sites.base_site import BaseSite
from apiscout.sites.generic import GenericSite, load_profile

__all__ = ['BaseSite', 'GenericSite', 'load_profile']
