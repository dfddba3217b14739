"""Imports every mapped module so ``Base.metadata`` knows all tables."""

from __future__ import annotations

from gestion_demandes.db.base import Base
from gestion_demandes.models import demande as _demande  # noqa: F401
from gestion_demandes.models import document_sequence as _document_sequence  # noqa: F401
from gestion_demandes.models import history_entry as _history_entry  # noqa: F401
from gestion_demandes.models import item_demande as _item_demande  # noqa: F401
from gestion_demandes.models import livraison as _livraison  # noqa: F401
from gestion_demandes.models import notification as _notification  # noqa: F401
from gestion_demandes.models import projet as _projet  # noqa: F401
from gestion_demandes.models import user as _user  # noqa: F401
from gestion_demandes.models import validation_reception as _validation_reception  # noqa: F401
from gestion_demandes.models import validation_signature as _validation_signature  # noqa: F401

metadata = Base.metadata
