# Copyright 2025 Google LLC
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
# ==============================================================================

# Free text embedded in a notification body is cut to this many characters.
PREVIEW_MAX_LENGTH = 50
PREVIEW_ELLIPSIS = "..."

# FCM accepts at most this many tokens per multicast request.
MULTICAST_MAX_TOKENS = 500

MAX_SUPPORT_MESSAGE_LENGTH = 5000
MAX_ISSUE_DESCRIPTION_LENGTH = 5000
MAX_RESPONSE_LENGTH = 5000
MAX_NOTIFICATION_TITLE_LENGTH = 200
MAX_NOTIFICATION_BODY_LENGTH = 2000

# Upper bound on decoded image uploads (5 MiB).
MAX_IMAGE_BYTES = 5 * 1024 * 1024

IMAGE_FOLDERS = {
    "profile": "profile_pics",
    "donation": "donation_images",
}

# Donation fields that only the create path may set.
DONATION_OWNERSHIP_FIELDS = ("userId", "orgId", "createdBy", "timestamp")
