"""
backend.services: Database-backed operations behind the API routers.

Every public function takes an open ``Session`` as its first argument and
commits its own writes.  Access failures raise ``backend.core.errors``
exceptions; serialisation to JSON-friendly dicts lives in
``backend.services.serializers``.
"""
