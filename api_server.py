"""
Clinic Access - REST API Server
Thin entry-point – all logic lives in clinic_access.api.
"""

from clinic_access.api.app import main

if __name__ == "__main__":
    main()
