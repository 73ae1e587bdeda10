# credentials.py - parsing and validation of vendor supplied credentials
import csv
import io

SUPPORTED_TYPES = ('account_share', 'email_invite', 'license_key')
PIN_REQUIRED_PROVIDERS = ('netflix',)


def _first(row, *keys):
    for k in keys:
        value = row.get(k)
        if value is not None and str(value).strip():
            return str(value).strip()
    return None


def _check_profiles(profiles, provider):
    """Return (clean_profiles, error)."""
    if not profiles or not isinstance(profiles, list):
        return None, 'At least one profile is required'
    clean = []
    for p in profiles:
        if not isinstance(p, dict):
            return None, 'Invalid profile entry'
        name = _first(p, 'profileName', 'name')
        if not name:
            return None, 'Profile missing profileName'
        pin = _first(p, 'pin')
        if provider in PIN_REQUIRED_PROVIDERS and not pin:
            return None, f'Profile {name} missing PIN (required for {provider.title()})'
        clean.append({'profileName': name, 'pin': pin})
    return clean, None


def validate_credential(cred, service_type, provider):
    """Normalise one credential entry. Returns (credential, error)."""
    if not isinstance(cred, dict):
        return None, 'Credential must be an object'

    if service_type == 'account_share':
        email = _first(cred, 'accountEmail', 'email')
        password = _first(cred, 'accountPassword', 'password')
        if not email or not password:
            return None, 'Missing accountEmail or accountPassword'
        profiles, error = _check_profiles(cred.get('profiles'), provider)
        if error:
            return None, error
        return {'accountEmail': email, 'accountPassword': password, 'profiles': profiles}, None

    if service_type == 'email_invite':
        email = _first(cred, 'email', 'Email')
        if not email:
            return None, 'Missing email'
        return {'email': email, 'available': cred.get('available') is not False}, None

    if service_type == 'license_key':
        key = _first(cred, 'key', 'licenseKey', 'License Key')
        if not key:
            return None, 'Missing license key'
        return {'key': key}, None

    return None, f'Credential upload is not supported for {service_type} products'


def validate_manual_credentials(items, service_type, provider):
    results, errors = [], []
    for cred in items:
        clean, error = validate_credential(cred, service_type, provider)
        if error:
            errors.append({'credential': _redact(cred), 'error': error})
        else:
            results.append(clean)
    return results, errors


def _csv_profiles(row):
    profiles = []
    index = 1
    while True:
        name = _first(row, f'profile{index}Name', f'Profile {index} Name', f'profile{index}_name')
        if not name:
            break
        pin = _first(row, f'profile{index}Pin', f'Profile {index} Pin', f'profile{index}_pin')
        profiles.append({'profileName': name, 'pin': pin})
        index += 1
    return profiles


def parse_credentials_csv(text, service_type, provider):
    """Parse an uploaded CSV into credential entries.

    account_share columns: accountEmail, accountPassword, profile1Name,
    profile1Pin, profile2Name, ... (``Account Email`` style headers work too).
    email_invite needs an ``email`` column and license_key a ``key`` column.
    Returns (results, errors) where errors carry the 1-based data row number.
    """
    if service_type not in SUPPORTED_TYPES:
        return [], [{'row': None, 'error': f'Credential upload is not supported for {service_type} products'}]

    reader = csv.DictReader(io.StringIO(text.lstrip('\ufeff')))
    results, errors = [], []
    for number, row in enumerate(reader, start=1):
        if not any((v or '').strip() for v in row.values() if isinstance(v, str)):
            continue
        if service_type == 'account_share':
            candidate = {
                'accountEmail': _first(row, 'accountEmail', 'Account Email', 'email'),
                'accountPassword': _first(row, 'accountPassword', 'Account Password', 'password'),
                'profiles': _csv_profiles(row),
            }
            if candidate['accountEmail'] and candidate['accountPassword'] and not candidate['profiles']:
                errors.append({'row': number, 'error': 'No profiles found'})
                continue
        else:
            candidate = row
        clean, error = validate_credential(candidate, service_type, provider)
        if error:
            errors.append({'row': number, 'error': error})
        else:
            results.append(clean)
    return results, errors


def unit_count(cred, service_type):
    """Units of stock a credential provides: one per profile for shared accounts."""
    if service_type == 'account_share':
        return len(cred.get('profiles') or [])
    return 1


def mask_email(email):
    if not email:
        return None
    local, sep, domain = email.partition('@')
    if not sep:
        return email
    if len(local) > 2:
        masked = local[:2] + '*' * (len(local) - 2)
    else:
        masked = '*' * len(local)
    return f'{masked}@{domain}'


def _redact(cred):
    if not isinstance(cred, dict):
        return cred
    redacted = dict(cred)
    for field in ('accountPassword', 'password', 'key', 'licenseKey'):
        if redacted.get(field):
            redacted[field] = '***'
    return redacted
