#!/usr/bin/env python3
"""
Environment setup script for the medicine reminder service
Run this script to create your .env file with database, Twilio and timezone settings
"""

import os
import secrets
import string
from datetime import datetime
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

REQUIRED_VARS = [
    'SECRET_KEY',
    'DATABASE_URL',
    'REMINDER_TIMEZONE',
]

SMS_VARS = [
    'TWILIO_ACCOUNT_SID',
    'TWILIO_AUTH_TOKEN',
    'TWILIO_PHONE_NUMBER',
]


def generate_secret_key(length=50):
    """Generate a secure random secret key"""
    alphabet = string.ascii_letters + string.digits + '!@#$%^&*(-_=+)'
    return ''.join(secrets.choice(alphabet) for i in range(length))


def is_valid_timezone(name):
    try:
        ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        return False
    return True


def render_env(values, generated_on=None):
    """Build the .env file body from a dict of settings."""
    generated_on = generated_on or datetime.now().strftime('%Y-%m-%d %H:%M')
    return f"""# Medicine reminder service configuration
# Generated on {generated_on}

# Security
SECRET_KEY={values['SECRET_KEY']}

# Database
DATABASE_URL={values['DATABASE_URL']}

# Twilio SMS (reminders are logged as missed while these are empty)
TWILIO_ACCOUNT_SID={values.get('TWILIO_ACCOUNT_SID', '')}
TWILIO_AUTH_TOKEN={values.get('TWILIO_AUTH_TOKEN', '')}
TWILIO_PHONE_NUMBER={values.get('TWILIO_PHONE_NUMBER', '')}

# Reminder scheduling
REMINDER_TIMEZONE={values['REMINDER_TIMEZONE']}
REMINDER_SCHEDULER_ENABLED=true

# Application Settings
FLASK_DEBUG=False
"""


def prompt_settings():
    """Ask for the settings interactively"""
    database_url = input("Enter DATABASE_URL (blank for local SQLite): ").strip()
    if not database_url:
        database_url = 'sqlite:///medreminder.db'

    while True:
        timezone = input("Enter reference timezone [Asia/Kolkata]: ").strip() or 'Asia/Kolkata'
        if is_valid_timezone(timezone):
            break
        print(f"❌ Unknown timezone '{timezone}'. Use an IANA name such as Europe/London.")

    print("\n📱 Twilio Configuration (for SMS reminders):")
    print("Press Enter to skip SMS configuration for now.")
    account_sid = input("Enter your Twilio Account SID (optional): ").strip()
    auth_token = ""
    phone_number = ""
    if account_sid:
        auth_token = input("Enter your Twilio Auth Token: ").strip()
        phone_number = input("Enter your Twilio sender number (e.g. +15551234567): ").strip()

    print("\n🔐 Generating secure secret key...")
    return {
        'SECRET_KEY': generate_secret_key(),
        'DATABASE_URL': database_url,
        'REMINDER_TIMEZONE': timezone,
        'TWILIO_ACCOUNT_SID': account_sid,
        'TWILIO_AUTH_TOKEN': auth_token,
        'TWILIO_PHONE_NUMBER': phone_number,
    }


def create_env_file(values, path='.env'):
    """Write the .env file"""
    try:
        with open(path, 'w') as f:
            f.write(render_env(values))
    except OSError as e:
        print(f"\n❌ Error creating .env file: {e}")
        return False

    print("\n✅ .env file created successfully!")
    print(f"📝 File location: {os.path.abspath(path)}")
    print("\n🚨 Keep your .env file out of version control.")

    print("\n📋 Configuration Summary:")
    print(f"   ├── Database: {values['DATABASE_URL'].split('://')[0]}")
    print(f"   ├── Reference timezone: {values['REMINDER_TIMEZONE']}")
    print(f"   ├── Secret Key: ✓ Generated ({len(values['SECRET_KEY'])} characters)")
    print(f"   └── SMS Reminders: {'✓ Configured' if values.get('TWILIO_ACCOUNT_SID') else '❌ Skipped'}")
    return True


def missing_vars(content):
    """Return required variables that are absent or empty in .env content"""
    present = {}
    for line in content.splitlines():
        line = line.strip()
        if not line or line.startswith('#') or '=' not in line:
            continue
        key, value = line.split('=', 1)
        present[key.strip()] = value.strip()

    missing = [var for var in REQUIRED_VARS if not present.get(var)]
    if present.get('TWILIO_ACCOUNT_SID'):
        missing += [var for var in SMS_VARS if not present.get(var)]
    return missing


def verify_env_file(path='.env'):
    """Verify the created .env file"""
    if not os.path.exists(path):
        print("❌ .env file not found!")
        return False

    with open(path, 'r') as f:
        missing = missing_vars(f.read())

    if missing:
        print(f"❌ Missing required variables: {', '.join(missing)}")
        return False

    print("✅ .env file verification passed!")
    return True


def main():
    """Main function"""
    print("🚀 Medicine Reminder Environment Setup Tool")
    print("=" * 40)

    if os.path.exists('.env'):
        response = input("⚠️  .env file already exists. Overwrite? (y/N): ").strip().lower()
        if response not in ['y', 'yes']:
            print("👋 Setup cancelled. Existing .env file preserved.")
            return 0

        backup_name = '.env.backup'
        os.rename('.env', backup_name)
        print(f"📁 Existing .env backed up as {backup_name}")

    if not create_env_file(prompt_settings()):
        print("\n❌ Environment setup failed!")
        return 1

    verify_env_file()
    print("\n🎉 Environment setup complete!")
    print("\n📝 Next steps:")
    print("   1. Run `flask --app app init-db` to create the tables")
    print("   2. Run `flask --app app send-test-sms <your number>` to check Twilio")
    print("   3. Start the service with `python app.py`")
    return 0


if __name__ == '__main__':
    exit(main())
