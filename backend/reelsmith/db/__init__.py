# Database module
