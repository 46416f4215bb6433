# blossom/modules/__init__.py
