# Domain package
