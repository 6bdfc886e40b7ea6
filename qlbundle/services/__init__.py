"""
Domain services for customizing a CodeQL bundle:
- pack repository enumeration and manifest editing
- the CodeQL CLI facade
- weaving customization packs into standard library packs
- recompiling query packs that depend on woven packs
"""
