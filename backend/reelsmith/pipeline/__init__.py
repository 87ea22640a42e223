# Pipeline module
