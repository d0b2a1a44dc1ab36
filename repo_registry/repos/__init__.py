"""
Repository query layer.

Criteria, ordering, keyset pagination and the query pipeline that turns
criteria into pages of repositories.
"""
