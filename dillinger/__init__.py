# Dillinger core package
# Platform configuration, installation lifecycle and storage volume management.
