"""Constants shared by the SAML package."""

SAML_PREFERENCES_DB_KEY = "features.saml"
AUTHENTICATION_METHOD_DB_KEY = "userManagement.authenticationMethod"

METADATA_SCHEMA = "saml-schema-metadata-2.0.xsd"
NAMEID_FORMAT_EMAIL = "urn:oasis:names:tc:SAML:1.1:nameid-format:emailAddress"

SP_METADATA_PATH = "sso/saml/metadata"
SP_ACS_PATH = "sso/saml/acs"
