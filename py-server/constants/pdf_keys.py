"""
PDF Dictionary Keys and Name Constants
"""

# Page Tree Keys
KEY_PARENT = "/Parent"

# Resource Dictionary Keys
KEY_RESOURCES = "/Resources"
KEY_XOBJECT = "/XObject"

# Object Types and Subtypes
KEY_SUBTYPE = "/Subtype"
VAL_IMAGE = "/Image"
VAL_FORM = "/Form"

# Image Properties
KEY_WIDTH = "/Width"
KEY_HEIGHT = "/Height"
